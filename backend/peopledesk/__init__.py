"""
PeopleDesk Backend — Application Package Initializer
======================================================

What: HR backend package. This release carries the employee
      profile-picture pipeline: upload, normalize, store, link, serve.
Who:  Imported by uvicorn (peopledesk.main:app), Alembic, pytest and the
      maintenance command (python -m peopledesk.maintenance).

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← multipart parsing, headers, status codes
    ├─────────────────────────────────────┤
    │   ProfilePictureService (Orchestr.) │  ← validate → transform → store → link
    ├─────────────────────────────────────┤
    │  Validator │ Transformer │ Store    │  ← Pillow + aiofiles on local disk
    ├─────────────────────────────────────┤
    │      User repository (SQLAlchemy)   │  ← owner records, compare-and-swap link
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
