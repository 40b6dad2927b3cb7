"""
VOLAPI - Volumes API

Control plane for NFS shared volumes.
Responsibilities:
- Volume CRUD, backed by a storage VM per volume
- Volume reservations for VMs being provisioned
- Tracking of the VMs referencing each volume
- Translation of JSON predicates to record store filters
"""
