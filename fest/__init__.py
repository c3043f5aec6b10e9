"""fest - festival progress tracking and next-task selection."""

# No imports at package level; import submodules directly where needed

__all__ = [
    "aggregate",
    "cancellation",
    "checklist",
    "errors",
    "fest_logging",
    "filetime",
    "frontmatter",
    "graph",
    "manager",
    "models",
    "planning",
    "resolve",
    "selector",
    "store",
]
