# Routes package init
"""
PeopleDesk Backend — API Routes Package
=========================================

Route Inventory:
    - profile_pictures.py: POST   /api/users/{id}/profile-picture  (upload / replace)
                           GET    /api/users/{id}/profile-picture  (reference + file info)
                           DELETE /api/users/{id}/profile-picture  (remove)
    - files.py:            GET    /api/files/{path}                (serve stored image)
    - maintenance.py:      GET    /api/maintenance/storage-stats
                           POST   /api/maintenance/profile-pictures/reconcile
    - health.py:           GET    /health

Routes stay thin: transport rules (one file, field name, body ceiling) live
here, everything else lives in services.
"""
