# change_audit/core/context.py

import contextvars

collection_ctx = contextvars.ContextVar("collection", default=None)
pipeline_id_ctx = contextvars.ContextVar("pipeline_id", default=None)
