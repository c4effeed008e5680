"""Search indexing adapters.

MilvusEmailIndexer imports pymilvus; import it from
``onebox.infrastructure.indexing.milvus_indexer`` only when indexing is enabled.
"""
