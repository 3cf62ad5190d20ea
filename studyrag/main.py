# Entry point for the FastAPI app
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
import logging

from .rag.errors import IngestionError, RagError, RetrievalTransportError
from .rag.factory import build_services
from .rag.retriever import normalize_doc_id

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI()


@app.on_event("startup")
async def startup_event():
    # Tests install their own services before startup
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
        logger.info("[API] RAG services initialized")


@app.on_event("shutdown")
async def shutdown_event():
    services = getattr(app.state, "services", None)
    if services is not None:
        await services.aclose()


def _services(request: Request):
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


async def _read_json(request: Request) -> dict:
    try:
        data = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def _error_response(status_code: int, error: Exception) -> JSONResponse:
    body = {"error": str(error)}
    if isinstance(error, RagError):
        body["stage"] = error.stage
    return JSONResponse(status_code=status_code, content=body)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/upload")
async def upload(request: Request):
    """Ingest plain text extracted from an uploaded document.

    Body: ``{"text": str, "docId": str?}``
    """
    data = await _read_json(request)
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        return _error_response(400, ValueError("Missing text"))

    services = _services(request)
    try:
        result = await services.ingestor.ingest_text(text, doc_id=normalize_doc_id(data.get("docId")))
    except IngestionError as e:
        logger.error(f"[API] Upload rejected at {e.stage}: {e}")
        return _error_response(400, e)
    except RagError as e:
        logger.error(f"[API] Upload failed at {e.stage}: {e}")
        return _error_response(502, e)

    response = {"ok": True, "file": {"id": result.doc_id, "name": data.get("name") or "text-upload.txt"}}
    response.update(result.to_dict())
    logger.info(f"[API] Upload complete: {response}")
    return response


@app.post("/api/query")
async def query(request: Request):
    """Answer a question from stored chunks.

    Body: ``{"query": str, "docId": str?, "topK": int?, "history": list?,
    "reference": str?, "rawChunks": list?}``
    """
    data = await _read_json(request)
    question = data.get("query") or data.get("question")
    if not isinstance(question, str) or not question.strip():
        return _error_response(400, ValueError("Missing query"))

    history = data.get("history")
    if history is not None and not isinstance(history, list):
        return _error_response(400, ValueError("history must be a list of {role, content} messages"))

    raw_chunks = data.get("rawChunks")
    if raw_chunks is not None and not isinstance(raw_chunks, list):
        return _error_response(400, ValueError("rawChunks must be a list of strings"))

    try:
        top_k = int(data["topK"]) if data.get("topK") is not None else None
    except (TypeError, ValueError):
        return _error_response(400, ValueError("topK must be an integer"))

    services = _services(request)
    try:
        result = await services.retriever.retrieve(
            question,
            top_k=top_k,
            doc_id=data.get("docId"),
            history=history,
            reference=data.get("reference"),
            raw_chunks=[str(c) for c in raw_chunks] if raw_chunks else None,
        )
    except RetrievalTransportError as e:
        logger.error(f"[API] Query failed at {e.stage}: {e}")
        return _error_response(502, e)
    except ValueError as e:
        return _error_response(400, e)

    return result.to_dict()


@app.get("/api/debug/chunks")
async def debug_chunks(request: Request, docId: str):
    services = _services(request)
    try:
        chunks = await services.store.list_chunks(docId)
    except RagError as e:
        return _error_response(502, e)
    return {
        "docId": docId,
        "count": len(chunks),
        "chunks": [dict(c.to_dict(), ordinal=c.ordinal) for c in chunks],
    }


@app.delete("/api/documents/{doc_id}")
async def delete_document(request: Request, doc_id: str):
    services = _services(request)
    try:
        deleted = await services.store.delete_document(doc_id)
    except RagError as e:
        return _error_response(502, e)
    return {"docId": doc_id, "deleted": deleted}
