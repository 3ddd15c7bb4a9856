"""HTTP routers; epubclean.main includes them explicitly."""
