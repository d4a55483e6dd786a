"""
EHS Hub - Services

Components:
- workflow_engine: Status vocabulary, transitions and the permission gate
- workflow_service: Response/decision operations and their errors
- identity: Bearer token -> current user
- stores: Workflow record and evidence blob stores
"""
