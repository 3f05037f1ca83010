"""Derive OpenRPC schemas from annotated Python RPC interfaces."""

from openrpc_derive.markers import RpcMetadata, document_rpc, rpc

__all__ = ["RpcMetadata", "document_rpc", "rpc"]
