# therapychat HTTP API layer
#
# Versioned REST + SSE endpoints mounted at /api/v1/ (canonical) with
# aliases at /api/ for existing clients.
