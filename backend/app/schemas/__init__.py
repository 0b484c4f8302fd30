"""Pydantic request/response schemas for API endpoints.

Tenant-facing schemas live in app.schemas.features; operator schemas in
app.schemas.admin.
"""
