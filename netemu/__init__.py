"""
Network emulation topology controller package.

Modules:
- topology: canonical Topology/Node/Link/ServiceDef model and status enums
- loader: load *.pb.txt / *.yaml topology specs and validate them
- state_map: per-node status registry with the aggregate topology state
- cluster: cluster capability (Kubernetes implementation) used by managers
- manager: topology manager (load/push/delete/watch/status/resources)
- lifecycle: create/delete/service-resolution workflows
- api: REST API surface for create/show/delete
"""
