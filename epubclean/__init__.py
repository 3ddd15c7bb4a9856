# epubclean/__init__.py
"""
Keep this file minimal so 'epubclean' is always a proper package.

Do NOT import submodules here (e.g., don't import main or cli).
Tests and runtime should import from the submodules directly:
    from epubclean.sanitize.orchestrator import sanitize_tree
And Uvicorn should use:
    uvicorn epubclean.main:create_app --factory
"""
