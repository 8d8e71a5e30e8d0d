"""Application framework around the verb engine.

Common entrypoints:

- `protonverbs.framework.prefix`: prefix lifecycle (inspect/create/delete/locate)
- `protonverbs.framework.orchestrator`: run verbs against a ready prefix
- `protonverbs.framework.config`: typed tool configuration
"""
