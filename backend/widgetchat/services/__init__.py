"""Service layer.

Imports are intentionally NOT eagerly loaded here to avoid pulling in model
SDKs and database drivers when only the text pipeline is needed. Use
explicit imports:
    from widgetchat.services.chat.orchestrator import ChatOrchestrator
"""
