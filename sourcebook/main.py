"""Quart application exposing ingestion, question answering and summaries."""
import json
from typing import Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from quart import Quart, Response, jsonify, request

from sourcebook import config
from sourcebook.errors import SourcebookError
from sourcebook.llm_client import OllamaClient
from sourcebook.logging_config import configure_logging
from sourcebook.rag.answer import AnswerPipeline, AnswerStream
from sourcebook.rag.index_client import FaissIndexClient, IndexClient
from sourcebook.rag.ingest import IngestPipeline
from sourcebook.rag.models import FileSource, TextSource, UrlSource

logger = structlog.get_logger()


class IngestPayload(BaseModel):
    """JSON body for text and URL ingestion.

    Pasted text passes through untouched; blank text is left for the
    normalizer to reject as empty content.
    """

    type: Literal["text", "url"]
    content: str

    @model_validator(mode="after")
    def check_url(self) -> "IngestPayload":
        if self.type == "url":
            self.content = self.content.strip()
            if not self.content.startswith(("http://", "https://")):
                raise ValueError("URL must start with http:// or https://")
        return self


class ChatPayload(BaseModel):
    """JSON body for a question."""

    model_config = ConfigDict(str_strip_whitespace=True)

    message: str = Field(..., min_length=1, max_length=config.MAX_QUESTION_CHARS)
    streaming: bool = False


class BadRequest(Exception):
    """Request body is missing or malformed."""


def _sse(event: dict) -> bytes:
    return f"data: {json.dumps(event)}\n\n".encode("utf-8")


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


async def _read_ingest_source():
    """Build a source input from a multipart upload or a JSON body."""
    if request.mimetype == "multipart/form-data":
        form = await request.form
        files = await request.files
        upload = files.get("file")

        if upload is None or form.get("type", "file") != "file":
            raise BadRequest("Invalid file upload")

        return FileSource(
            data=upload.read(),
            filename=upload.filename or "upload",
            media_type=upload.mimetype or None,
        )

    data = await request.get_json(silent=True)
    if not data:
        raise BadRequest("Missing type or content")

    try:
        payload = IngestPayload.model_validate(data)
    except ValidationError as e:
        raise BadRequest(_validation_message(e)) from e

    if payload.type == "text":
        return TextSource(text=payload.content)
    return UrlSource(url=payload.content)


def create_app(
    llm: Optional[OllamaClient] = None,
    index: Optional[IndexClient] = None,
    ingest_pipeline: Optional[IngestPipeline] = None,
    answer_pipeline: Optional[AnswerPipeline] = None,
) -> Quart:
    """Compose the pipelines around one shared index client and build the app.

    The index client opens its backing store on first use, so creating the
    app performs no I/O.
    """
    llm = llm or OllamaClient()
    index = index or FaissIndexClient(llm=llm)
    ingest_pipeline = ingest_pipeline or IngestPipeline(index)
    answer_pipeline = answer_pipeline or AnswerPipeline(index, llm)

    app = Quart(__name__)

    @app.route("/api/ingest", methods=["POST"])
    async def ingest():
        """Ingest one source.

        Accepts either a multipart upload (field ``file``, optional ``type=file``)
        or JSON ``{"type": "text" | "url", "content": "..."}``.

        Returns JSON:
        {
            "success": true,
            "chunks": 3,
            "message": "...",
            "source": {"origin_id": "...", "kind": "...", "media_type": "...", "title": "..."}
        }
        """
        try:
            source = await _read_ingest_source()
            result = await ingest_pipeline.ingest(source)
        except BadRequest as e:
            return jsonify({"error": "bad_request", "detail": str(e)}), 400
        except SourcebookError as e:
            logger.warning("ingest_failed", error_kind=e.kind, error=e.message)
            return jsonify(e.to_dict()), e.status_code
        except Exception as e:
            logger.exception("ingest_endpoint_error", error=str(e))
            return jsonify({"error": "internal_server_error", "detail": "Internal server error"}), 500

        descriptor = result.descriptor
        return jsonify({
            "success": True,
            "chunks": result.chunk_count,
            "message": (
                f"Successfully processed and added {result.chunk_count} chunks "
                "to the knowledge base."
            ),
            "source": {
                "origin_id": descriptor.origin_id,
                "kind": descriptor.kind.value,
                "media_type": descriptor.media_type,
                "title": descriptor.title,
            },
        })

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer a question from the indexed sources.

        Expects JSON body:
        {
            "message": "question text",
            "streaming": false
        }

        Returns ``{"answer": "..."}``, or with ``streaming`` a server-sent event
        stream of ``{"content": delta, "done": false}`` events terminated by
        ``{"content": "", "done": true}``.
        """
        data = await request.get_json(silent=True)
        if not data:
            return jsonify({"error": "bad_request", "detail": "Missing 'message' in request body"}), 400

        try:
            payload = ChatPayload.model_validate(data)
        except ValidationError as e:
            return jsonify({"error": "bad_request", "detail": _validation_message(e)}), 400

        logger.info(
            "chat_request_received",
            message_length=len(payload.message),
            streaming=payload.streaming,
        )

        try:
            if not payload.streaming:
                answer = await answer_pipeline.answer_once(payload.message)
                return jsonify({"answer": answer})

            stream = await answer_pipeline.answer_streaming(payload.message)
        except SourcebookError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception as e:
            logger.exception("chat_endpoint_error", error=str(e))
            return jsonify({"error": "internal_server_error", "detail": "Internal server error"}), 500

        async def events():
            try:
                async for delta in stream:
                    yield _sse({"content": delta, "done": False})
                yield _sse({"content": "", "done": True})
            except SourcebookError as e:
                yield _sse({**e.to_dict(), "done": True})
            finally:
                await stream.aclose()

        return Response(
            AnswerStream(events(), stream),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.route("/api/summarize", methods=["POST"])
    async def summarize():
        """Summarize everything indexed so far."""
        try:
            summary = await answer_pipeline.summarize()
        except SourcebookError as e:
            return jsonify(e.to_dict()), e.status_code
        except Exception as e:
            logger.exception("summarize_endpoint_error", error=str(e))
            return jsonify({"error": "internal_server_error", "detail": "Internal server error"}), 500

        return jsonify({"success": True, "summary": summary})

    @app.route("/health/ready")
    async def health_ready():
        """Readiness check - Ollama reachable and chat model pulled."""
        checks = {
            "status": "healthy",
            "ollama": False,
            "models": False,
        }

        try:
            models = await llm.list_models()
            checks["ollama"] = True

            if llm.model in models:
                checks["models"] = True
            else:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing chat model: {llm.model}"

        except SourcebookError as e:
            logger.error("health_check_failed", error=e.message)
            checks["status"] = "unhealthy"
            checks["error"] = e.message

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    @app.route("/health/live")
    async def health_live():
        """Liveness check - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "not_found", "detail": "Not found"}), 404

    return app


if __name__ == "__main__":
    configure_logging()
    # For development - serve with hypercorn in production
    create_app().run(host="0.0.0.0", port=5000, debug=True)
