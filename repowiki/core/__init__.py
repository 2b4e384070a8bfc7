# Subpackages are imported directly (e.g. `from repowiki.core.db.models import Base`)
# so that light modules do not pull in the LLM stack.
