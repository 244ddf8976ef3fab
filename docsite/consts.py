"""Record kinds and other constants used across the service."""

# Marks the root of a module when addressing derived views by symbol.
ROOT_SYMBOL = "$$root$$"

MODULE_KIND = "module"
MODULE_VERSION_KIND = "module_version"
MODULE_ENTRY_KIND = "module_entry"
DOC_NODE_KIND = "doc_node"
MODULE_DEP_KIND = "module_dependency"
DEP_ERROR_KIND = "dependency_error"
INFO_PAGE_KIND = "info_page"
NAV_INDEX_KIND = "nav_index"
SYMBOL_INDEX_KIND = "symbol_index"
PATH_COMPLETIONS_KIND = "path_completions"
DOC_PAGE_KIND = "doc_page"

# Generated records that are dropped whenever a module version is reloaded.
GENERATED_KINDS = (
    DOC_NODE_KIND,
    SYMBOL_INDEX_KIND,
    DOC_PAGE_KIND,
    NAV_INDEX_KIND,
)
