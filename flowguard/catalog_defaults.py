# flowguard/catalog_defaults.py
# Built-in subset of common node types; enough for offline validation and tests.
from flowguard.catalog import StaticNodeCatalog

_HTTP_METHODS = [{"name": m, "value": m} for m in ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")]

DEFAULT_NODE_TYPES = [
    # ---- triggers ----
    {"nodeType": "nodes-base.manualTrigger", "displayName": "Manual Trigger", "isTrigger": True},
    {"nodeType": "nodes-base.start", "displayName": "Start", "isTrigger": True},
    {"nodeType": "nodes-base.errorTrigger", "displayName": "Error Trigger", "isTrigger": True},
    {
        "nodeType": "nodes-base.scheduleTrigger",
        "displayName": "Schedule Trigger",
        "version": 1.2,
        "isVersioned": True,
        "isTrigger": True,
    },
    {
        "nodeType": "nodes-base.webhook",
        "displayName": "Webhook",
        "version": 2.1,
        "isVersioned": True,
        "isTrigger": True,
        "isWebhook": True,
        "properties": [
            {"name": "path", "displayName": "Path", "type": "string", "default": ""},
            {"name": "httpMethod", "displayName": "HTTP Method", "type": "options",
             "options": _HTTP_METHODS, "default": "GET"},
            {"name": "responseMode", "displayName": "Respond", "type": "options", "default": "onReceived",
             "options": [{"name": n, "value": n} for n in ("onReceived", "lastNode", "responseNode")]},
        ],
    },
    {"nodeType": "nodes-base.formTrigger", "displayName": "n8n Form Trigger", "version": 2.2,
     "isVersioned": True, "isTrigger": True},
    # ---- core ----
    {
        "nodeType": "nodes-base.httpRequest",
        "displayName": "HTTP Request",
        "version": 4.2,
        "isVersioned": True,
        "isAITool": True,
        "hasToolVariant": True,
        "properties": [
            {"name": "method", "displayName": "Method", "type": "options", "options": _HTTP_METHODS,
             "default": "GET"},
            {"name": "url", "displayName": "URL", "type": "string", "default": "", "required": True},
        ],
    },
    {"nodeType": "nodes-base.set", "displayName": "Edit Fields (Set)", "version": 3.4, "isVersioned": True},
    {"nodeType": "nodes-base.if", "displayName": "If", "version": 2.2, "isVersioned": True},
    {"nodeType": "nodes-base.switch", "displayName": "Switch", "version": 3.2, "isVersioned": True},
    {"nodeType": "nodes-base.merge", "displayName": "Merge", "version": 3, "isVersioned": True},
    {"nodeType": "nodes-base.noOp", "displayName": "No Operation, do nothing"},
    {
        "nodeType": "nodes-base.code",
        "displayName": "Code",
        "version": 2,
        "isVersioned": True,
        "properties": [
            {"name": "language", "displayName": "Language", "type": "options", "default": "javaScript",
             "options": [{"name": "JavaScript", "value": "javaScript"}, {"name": "Python", "value": "python"}]},
            {"name": "jsCode", "displayName": "JavaScript", "type": "string", "default": ""},
        ],
    },
    {"nodeType": "nodes-base.splitInBatches", "displayName": "Loop Over Items", "version": 3,
     "isVersioned": True},
    {"nodeType": "nodes-base.respondToWebhook", "displayName": "Respond to Webhook", "version": 1.1,
     "isVersioned": True},
    {"nodeType": "nodes-base.emailSend", "displayName": "Send Email", "version": 2.1, "isVersioned": True},
    {"nodeType": "nodes-base.stickyNote", "displayName": "Sticky Note"},
    {
        "nodeType": "nodes-base.slack",
        "displayName": "Slack",
        "version": 2.3,
        "isVersioned": True,
        "isAITool": True,
        "hasToolVariant": True,
        "properties": [
            {"name": "resource", "displayName": "Resource", "type": "options", "default": "message",
             "options": [{"name": n, "value": n} for n in ("message", "channel", "user", "file")]},
        ],
    },
    {"nodeType": "nodes-base.googleSheets", "displayName": "Google Sheets", "version": 4.5,
     "isVersioned": True, "isAITool": True, "hasToolVariant": True},
    {"nodeType": "nodes-base.postgres", "displayName": "Postgres", "version": 2.5, "isVersioned": True,
     "isAITool": True, "hasToolVariant": True},
    {"nodeType": "nodes-base.github", "displayName": "GitHub", "version": 1.1, "isVersioned": True},
    # ---- AI ----
    {"nodeType": "nodes-langchain.agent", "displayName": "AI Agent", "package": "@n8n/n8n-nodes-langchain",
     "version": 2, "isVersioned": True},
    {"nodeType": "nodes-langchain.chatTrigger", "displayName": "Chat Trigger",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.1, "isVersioned": True, "isTrigger": True},
    {"nodeType": "nodes-langchain.chainLlm", "displayName": "Basic LLM Chain",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.6, "isVersioned": True},
    {"nodeType": "nodes-langchain.lmChatOpenAi", "displayName": "OpenAI Chat Model",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.2, "isVersioned": True},
    {"nodeType": "nodes-langchain.lmChatAnthropic", "displayName": "Anthropic Chat Model",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.3, "isVersioned": True},
    {"nodeType": "nodes-langchain.memoryBufferWindow", "displayName": "Window Buffer Memory",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.3, "isVersioned": True},
    {"nodeType": "nodes-langchain.outputParserStructured", "displayName": "Structured Output Parser",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.2, "isVersioned": True},
    {"nodeType": "nodes-langchain.embeddingsOpenAi", "displayName": "Embeddings OpenAI",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.2, "isVersioned": True},
    {"nodeType": "nodes-langchain.vectorStoreInMemory", "displayName": "In-Memory Vector Store",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.1, "isVersioned": True},
    {"nodeType": "nodes-langchain.toolCode", "displayName": "Code Tool", "package": "@n8n/n8n-nodes-langchain",
     "version": 1.1, "isVersioned": True, "isAITool": True},
    {"nodeType": "nodes-langchain.toolHttpRequest", "displayName": "HTTP Request Tool",
     "package": "@n8n/n8n-nodes-langchain", "version": 1.1, "isVersioned": True, "isAITool": True},
    {"nodeType": "nodes-langchain.toolCalculator", "displayName": "Calculator",
     "package": "@n8n/n8n-nodes-langchain", "isAITool": True},
    {"nodeType": "nodes-langchain.toolWorkflow", "displayName": "Call n8n Workflow Tool",
     "package": "@n8n/n8n-nodes-langchain", "version": 2, "isVersioned": True, "isAITool": True},
    {"nodeType": "nodes-langchain.toolVectorStore", "displayName": "Vector Store Question Answer Tool",
     "package": "@n8n/n8n-nodes-langchain", "isAITool": True},
    {"nodeType": "nodes-langchain.toolThink", "displayName": "Think Tool",
     "package": "@n8n/n8n-nodes-langchain", "isAITool": True},
    {"nodeType": "nodes-langchain.toolWikipedia", "displayName": "Wikipedia",
     "package": "@n8n/n8n-nodes-langchain", "isAITool": True},
    {"nodeType": "nodes-langchain.toolSerpApi", "displayName": "SerpAPI",
     "package": "@n8n/n8n-nodes-langchain", "isAITool": True},
    {"nodeType": "nodes-langchain.mcpClientTool", "displayName": "MCP Client Tool",
     "package": "@n8n/n8n-nodes-langchain", "isAITool": True},
]


def default_catalog() -> StaticNodeCatalog:
    return StaticNodeCatalog(DEFAULT_NODE_TYPES)
