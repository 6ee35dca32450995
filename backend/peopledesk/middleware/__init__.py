# Middleware package init
"""
PeopleDesk Backend — Middleware Package
=========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain:
    Request → [Request ID] → [Logging] → [CORS] → Route Handler

    1. Request ID: correlation ID for every log line of the request
    2. Logging: method, path, status and duration once the response is ready
    3. CORS: Applied by FastAPI's CORSMiddleware (handles preflight)
"""
