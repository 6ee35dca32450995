# Services package init
"""
PeopleDesk Backend — Services Layer
=====================================

What:  The profile-picture pipeline, one component per module.

Service Inventory:
    - storage_paths:      StoragePathAllocator (category/YYYY/MM/<uuid>.jpg)
    - image_validator:    ImageValidator (size, signature, format, dimensions)
    - image_transformer:  ImageTransformer (300×300 primary, 100×100 thumbnail)
    - asset_store:        AssetStore (atomic write, idempotent delete, stat, walk)
    - asset_reader:       AssetReader (bytes + content type for serving)
    - user_repository:    ProfilePictureRepository / SqlUserRepository
    - profile_picture_service: ProfilePictureService (orchestration, rollback,
                          replacement, removal, reconciliation)

Only ProfilePictureService knows that a primary image and its thumbnail
belong together; the components below it deal in single files.
"""
