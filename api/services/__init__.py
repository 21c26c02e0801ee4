"""Service layer for business logic.

Layer hierarchy:
    Routes (HTTP) -> Services (Business Logic) -> Repositories (Database)

Services should:
- Apply the access policy (visibility and mutation rights)
- Validate input and enforce state machine transitions
- Orchestrate calls to repositories and record outbox events
- Raise typed errors from services.errors

Services should NOT:
- Directly execute SQL queries (use repositories)
- Know about HTTP request/response details
- Catch errors they cannot handle (main.py maps them to responses)
"""
