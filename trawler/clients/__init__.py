"""
Thin provider API clients.

Each client exposes page fetches returning `trawler.pagination.Page`, so
the shared PageReader can drive them.
"""
