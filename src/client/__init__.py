from client.client import DocumentClient, DocumentClientError

__all__ = ["DocumentClient", "DocumentClientError"]
