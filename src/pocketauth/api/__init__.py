# pocketauth HTTP layer
# Created: 2026-02-20
#
# FastAPI routers for the OAuth2 / OpenID Connect endpoints. Protocol paths
# (/authorize, /token, ...) are fixed by relying parties and are not versioned.
