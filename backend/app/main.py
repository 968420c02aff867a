"""Knowledge Base Backend Application.

Entry point for the knowledge-base service: ingest source trees and
documents into per-name vector collections, then search them semantically.

Modules:
    - ingestion: directory scanning, classification and the ingestion pipeline
    - documents: document conversion (docling) and chunking
    - embeddings: local / Bedrock embedding providers
    - rag: chunk model, code chunking, FAISS storage and search
    - knowledgebase: collection lifecycle (create, rename, delete, stats)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import AppSettings, get_config
from app.documents.chunker import ChunkingOptions, DocumentChunker
from app.documents.converter import DocumentConverter
from app.documents.hybrid import HybridChunker
from app.embeddings.bedrock import BedrockEmbeddingProvider
from app.embeddings.local import SentenceTransformerEmbeddingProvider
from app.embeddings.provider import EmbeddingProvider
from app.embeddings.service import EmbeddingService, set_embedding_service
from app.ingestion.router import router as ingestion_router, set_ingestion_service
from app.ingestion.service import IngestionService
from app.knowledgebase.collections import CollectionClient
from app.knowledgebase.router import router as knowledgebase_router, set_knowledgebase_service
from app.knowledgebase.service import KnowledgeBaseService
from app.rag.router import router as rag_router, set_search_service
from app.rag.search import SearchService
from app.rag.vector_store import FaissVectorStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# botocore.auth logs the full SigV4 canonical request, including
# x-amz-security-token.
for _noisy in (
    "botocore",
    "boto3",
    "urllib3",
    "urllib3.connectionpool",
    "httpx",
    "httpcore",
    "sentence_transformers",
    "faiss",
    "faiss.loader",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def build_embedding_provider(config: AppSettings) -> EmbeddingProvider:
    """Create the provider named by ``embedding.provider``."""
    emb_cfg = config.embedding
    if emb_cfg.provider == "bedrock":
        return BedrockEmbeddingProvider(
            model_id=emb_cfg.model,
            dim=emb_cfg.dim,
            aws_access_key_id=emb_cfg.aws_access_key_id or None,
            aws_secret_access_key=emb_cfg.aws_secret_access_key or None,
            aws_session_token=emb_cfg.aws_session_token or None,
            region_name=emb_cfg.region,
        )
    return SentenceTransformerEmbeddingProvider(
        model_name=emb_cfg.model,
        dim=emb_cfg.dim,
        cache_dir=emb_cfg.cache_dir,
    )


def wire_services(config: AppSettings) -> None:
    """Build every service from *config* and register the singletons."""
    embedding_service = EmbeddingService(build_embedding_provider(config))
    try:
        embedding_service.initialize()
        logger.info(
            "Embedding service ready: provider=%s model=%s dim=%d",
            config.embedding.provider,
            embedding_service.model_id,
            embedding_service.dim,
        )
    except Exception as exc:
        # Ingestion retries initialisation; search reports 503 until then.
        logger.warning("Embedding service not ready: %s", exc)
    set_embedding_service(embedding_service)

    store = FaissVectorStore(data_dir=config.storage.data_dir)
    collections = CollectionClient(store, schema_version=config.schema_version)
    doc_cfg = config.document

    set_knowledgebase_service(KnowledgeBaseService(collections, embedding_service))
    set_ingestion_service(
        IngestionService(
            collections,
            embedding_service,
            converter=DocumentConverter(
                output_dir=doc_cfg.output_dir,
                timeout=doc_cfg.conversion_timeout,
                kill_grace_seconds=doc_cfg.kill_grace_seconds,
            ),
            document_chunker=DocumentChunker(
                hybrid=HybridChunker(tokenizer_model=doc_cfg.tokenizer),
                timeout=doc_cfg.chunking_timeout,
            ),
            chunking_options=ChunkingOptions(
                max_tokens=doc_cfg.max_tokens,
                chunk_size=doc_cfg.chunk_size,
                chunk_overlap=doc_cfg.chunk_overlap,
                merge_peers=doc_cfg.merge_peers,
            ),
            batch_size=config.ingestion.batch_size,
            max_file_size=config.ingestion.max_file_size,
            respect_gitignore=config.ingestion.respect_gitignore,
        )
    )
    set_search_service(
        SearchService(
            collections,
            embedding_service,
            default_max_results=config.search.default_max_results,
            cache_timeout_seconds=config.search.cache_timeout_seconds,
        )
    )
    logger.info("Knowledge base services ready: data_dir=%s", config.storage.data_dir)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    wire_services(config)

    yield  # Application runs here

    set_search_service(None)
    set_ingestion_service(None)
    set_knowledgebase_service(None)
    set_embedding_service(None)
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Knowledge Base API",
    description="Ingest code and documents into vector knowledge bases and search them",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(ingestion_router)
app.include_router(knowledgebase_router)
app.include_router(rag_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
