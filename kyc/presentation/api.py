# kyc/presentation/api.py
import os, json, uuid, base64, binascii, datetime, logging
from typing import Dict, Any, Optional

import cv2
import numpy as np
from django.http import FileResponse
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from kyc.application.verification_orchestrator import StepOutcome, VerificationOrchestrator
from kyc.domain.errors import KYCError, StorageError
from kyc.domain.value_objects import AgeVerificationResult, VerificationStep
from kyc.infrastructure.config import (
    KYCRuntime, build_orchestrator, get_flow_log_dir, get_runtime, get_session_ttl,
)
from kyc.infrastructure.storage.s3_repositories import LocalCopy, SmartImageRepository
from .schemas import (
    ImageInputSerializer,
    SessionResponseSerializer,
    SimpleResponseSerializer,
    CloneCheckRequestSerializer,
    CloneCheckResponseSerializer,
    FlowSerializer,
)
from .sessions import SessionNotFound, SessionRegistry

logger = logging.getLogger("kyc.api")

TAGS = ["KYC"]


def _runtime() -> KYCRuntime:
    return get_runtime()


_sessions: Optional[SessionRegistry] = None

def _registry() -> SessionRegistry:
    global _sessions
    if _sessions is None:
        _sessions = SessionRegistry(lambda sid=None: build_orchestrator(sid, _runtime()), get_session_ttl())
    return _sessions


# ---------- archivos de flujo ----------

def _flow_dir() -> str:
    path = get_flow_log_dir()
    os.makedirs(path, exist_ok=True)
    return path

def _now_iso():
    return datetime.datetime.now(datetime.timezone.utc).isoformat()

def _safe_write_json(path: str, data: Dict[str, Any]):
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    os.replace(tmp, path)

def _read_json_file(path: str) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return None

def _write_flow(kind: str, started_at: str, result: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> str:
    uuid_flow = str(uuid.uuid4())
    t = _runtime().thresholds
    flow = {
        "uuid_flow": uuid_flow,
        "kind": kind,
        "started_at_utc": started_at,
        "finished_at_utc": _now_iso(),
        "thresholds": {
            "liveness": t.liveness,
            "match": t.match,
            "auth_match": t.auth_match,
            "age": t.age,
        },
        "result": result,
    }
    flow.update(extra or {})
    _safe_write_json(os.path.join(_flow_dir(), f"{uuid_flow}.txt"), flow)
    return uuid_flow

def _error_response(ex: Exception, where: str) -> Response:
    uuid_flow = str(uuid.uuid4())
    logger.exception({"event": "unhandled_error", "where": where, "uuid_flow": uuid_flow})
    error_log = {"uuid_flow": uuid_flow, "kind": "error", "where": where, "error": str(ex),
                 "finished_at_utc": _now_iso()}
    try:
        _safe_write_json(os.path.join(_flow_dir(), f"{uuid_flow}.txt"), error_log)
    except OSError:
        logger.warning({"event": "flow_write_failed", "uuid_flow": uuid_flow})
    return Response({
        "status": "false",
        "message": "Error no controlado en KYC",
        "data": {"uuid_flow": uuid_flow},
    }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


# ---------- imágenes de entrada ----------

def _b64_to_bgr(b64: str) -> np.ndarray:
    try:
        data = base64.b64decode(b64.split(",")[-1], validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError("imageBase64 inválido (no es base64)") from e
    arr = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR) if arr.size else None
    if img is None:
        raise ValueError("imageBase64 inválido (no se pudo decodificar)")
    return img

def _image_from_request(request):
    """(imagen, None) o (None, Response de error)."""
    ser = ImageInputSerializer(data=request.data or {})
    if not ser.is_valid():
        return None, Response({"detail": ser.errors}, status=status.HTTP_400_BAD_REQUEST)
    body = ser.validated_data
    if body.get("imageBase64"):
        try:
            return _b64_to_bgr(body["imageBase64"]), None
        except ValueError as e:
            return None, Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
    img = SmartImageRepository().fetch_image(body["imageUrl"])
    if img is None:
        return None, Response({"detail": "No se pudo obtener la imagen de imageUrl"},
                              status=status.HTTP_422_UNPROCESSABLE_ENTITY)
    return img, None


# ---------- respuestas de sesión ----------

def _session_state(orch: VerificationOrchestrator, uuid_flow: Optional[str] = None) -> Dict[str, Any]:
    done = orch.step is VerificationStep.COMPLETE
    return {
        "session_id": orch.session_id,
        "step": orch.step.value,
        "last_outcome": orch.last_outcome.public_dict() if orch.last_outcome else None,
        "result": orch.result().public_dict() if done else None,
        "uuid_flow": uuid_flow,
    }

def _outcome_response(orch: VerificationOrchestrator, outcome: StepOutcome, kind: str, started_at: str) -> Response:
    uuid_flow = None
    if outcome.ok and orch.step is VerificationStep.COMPLETE:
        uuid_flow = _write_flow(kind, started_at, orch.result().public_dict(), {"session_id": orch.session_id})
        # el flujo ya quedó en disco: la sesión no necesita retener los embeddings
        orch.release()
    passed = outcome.ok and outcome.failure_reason in (None, AgeVerificationResult.ABOVE_21)
    return Response({
        "status": "success" if passed else "false",
        "message": outcome.message or (outcome.failure_reason.value if outcome.failure_reason else ""),
        "data": _session_state(orch, uuid_flow),
    }, status=200)

def _not_found(session_id: str) -> Response:
    return Response({"detail": f"No existe la sesión {session_id}."}, status=status.HTTP_404_NOT_FOUND)


class SessionCreateAPIView(APIView):
    """POST /api/kyc/sessions -> nueva sesión en AWAITING_SELFIE."""
    @swagger_auto_schema(
        operation_summary="Crear sesión KYC",
        responses={201: SessionResponseSerializer},
        tags=TAGS,
    )
    def post(self, request):
        try:
            orch = _registry().create()
            logger.info({"event": "session_created", "session": orch.session_id})
            return Response({"status": "success", "message": "Sesión creada",
                             "data": _session_state(orch)}, status=status.HTTP_201_CREATED)
        except Exception as ex:
            return _error_response(ex, "session_create")


class SessionDetailAPIView(APIView):
    @swagger_auto_schema(
        operation_summary="Estado de la sesión",
        responses={200: SessionResponseSerializer, 404: "No existe la sesión."},
        tags=TAGS,
    )
    def get(self, request, session_id: str):
        try:
            orch = _registry().get(session_id)
        except SessionNotFound:
            return _not_found(session_id)
        return Response({"status": "success", "message": orch.step.value,
                         "data": _session_state(orch)}, status=200)

    @swagger_auto_schema(
        operation_summary="Descartar sesión (libera sus datos en memoria)",
        responses={200: "Sesión descartada", 404: "No existe la sesión."},
        tags=TAGS,
    )
    def delete(self, request, session_id: str):
        try:
            _registry().discard(session_id)
        except SessionNotFound:
            return _not_found(session_id)
        except Exception as ex:
            return _error_response(ex, "session_delete")
        return Response({"status": "success", "message": "Sesión descartada",
                         "data": {"session_id": session_id}}, status=200)


class _SessionStepAPIView(APIView):
    """Base para los pasos con imagen; las subclases definen `kind` y `_submit`."""
    kind = ""

    def _submit(self, orch: VerificationOrchestrator, img):
        raise NotImplementedError

    def post(self, request, session_id: str):
        img, error = _image_from_request(request)
        if error is not None:
            return error
        started_at = _now_iso()
        try:
            with _registry().locked(session_id) as orch:
                outcome = self._submit(orch, img).result()
                return _outcome_response(orch, outcome, self.kind, started_at)
        except SessionNotFound:
            return _not_found(session_id)
        except Exception as ex:
            return _error_response(ex, self.kind)


_step_doc = dict(
    request_body=ImageInputSerializer,
    # 200 OK para éxito y para fallos de negocio. 400/422 solo por request inválido.
    responses={200: SessionResponseSerializer, 400: "Request inválido", 404: "No existe la sesión.",
               422: "Imagen no disponible"},
    tags=TAGS,
)


class SelfieAPIView(_SessionStepAPIView):
    kind = "selfie"

    def _submit(self, orch, img):
        return orch.submit_selfie(img)

    @swagger_auto_schema(operation_summary="Paso 1: selfie (liveness + registro)", **_step_doc)
    def post(self, request, session_id: str):
        return super().post(request, session_id)


class DocumentAPIView(_SessionStepAPIView):
    kind = "document"

    def _submit(self, orch, img):
        return orch.submit_document(img)

    @swagger_auto_schema(operation_summary="Paso 2: documento (match + edad)", **_step_doc)
    def post(self, request, session_id: str):
        return super().post(request, session_id)


class ReauthenticateAPIView(_SessionStepAPIView):
    kind = "reauthenticate"

    def _submit(self, orch, img):
        return orch.submit_reauthentication(img)

    @swagger_auto_schema(operation_summary="KYC de un paso contra plantillas registradas", **_step_doc)
    def post(self, request, session_id: str):
        return super().post(request, session_id)


class SessionResetAPIView(APIView):
    @swagger_auto_schema(
        operation_summary="Reiniciar sesión",
        responses={200: SessionResponseSerializer, 404: "No existe la sesión."},
        tags=TAGS,
    )
    def post(self, request, session_id: str):
        try:
            with _registry().locked(session_id) as orch:
                orch.reset()
                return Response({"status": "success", "message": "Sesión reiniciada",
                                 "data": _session_state(orch)}, status=200)
        except SessionNotFound:
            return _not_found(session_id)


class BiometricsAPIView(APIView):
    @swagger_auto_schema(
        operation_summary="Borrar todas las plantillas biométricas",
        operation_description="Borrado no recuperable del namespace del store.",
        responses={200: SimpleResponseSerializer},
        tags=TAGS,
    )
    def delete(self, request):
        try:
            _runtime().store.delete_all()
        except StorageError as e:
            logger.info({"event": "biometrics_clear_failed", "error": str(e)})
            return Response({"status": "false", "message": AgeVerificationResult.INTERNAL_ERROR.value}, status=200)
        except Exception as ex:
            return _error_response(ex, "biometrics_delete")
        return Response({"status": "success", "message": "Plantillas biométricas eliminadas"}, status=200)


class CloneCheckAPIView(APIView):
    """
    POST /api/kyc/video/clone-check
    Body: {"videoUrl": "s3://.../grabacion.mp4"}
    """
    @swagger_auto_schema(
        operation_summary="Detección temporal de clon (imagen + audio por fragmento)",
        request_body=CloneCheckRequestSerializer,
        responses={200: CloneCheckResponseSerializer, 400: "Request inválido"},
        tags=TAGS,
    )
    def post(self, request):
        ser = CloneCheckRequestSerializer(data=request.data or {})
        if not ser.is_valid():
            return Response({"detail": ser.errors}, status=status.HTTP_400_BAD_REQUEST)
        video_url = ser.validated_data["videoUrl"].strip()
        started_at = _now_iso()
        try:
            rt = _runtime()
            with LocalCopy(video_url) as path:
                if path is None:
                    return Response({"status": "false", "message": "No se pudo obtener el video", "data": None},
                                    status=200)
                try:
                    recording = rt.recording_loader.load(path)
                    try:
                        fragments = rt.new_segmenter().segment(recording)
                    finally:
                        recording.close()
                    verdict = rt.aggregator.evaluate(fragments)
                except KYCError as e:
                    logger.info({"event": "clone_check_failed", "error": type(e).__name__, "detail": str(e)})
                    return Response({"status": "false", "message": str(e), "data": None}, status=200)

            result = verdict.public_dict()
            uuid_flow = _write_flow("clone_check", started_at, result, {"video_uri": video_url})
            return Response({
                "status": "success" if not verdict.is_cloned else "false",
                "message": verdict.category.value,
                "data": {"uuid_flow": uuid_flow, "verdict": result},
            }, status=200)
        except Exception as ex:
            return _error_response(ex, "clone_check")


# ---------- Consultar flujo ----------
download_param = openapi.Parameter(
    "download",
    openapi.IN_QUERY,
    description="Si es true/1, descarga el .txt original como attachment.",
    type=openapi.TYPE_BOOLEAN
)
class FlowAPIView(APIView):
    @swagger_auto_schema(
        operation_summary="Consultar flujo por uuid_flow",
        manual_parameters=[download_param],
        responses={200: FlowSerializer, 404: "No existe el flujo solicitado."},
        tags=TAGS,
    )
    def get(self, request, uuid_flow: str):
        try:
            uuid_flow = str(uuid.UUID(uuid_flow))
        except ValueError:
            return Response({"detail": "uuid inválido"}, status=status.HTTP_400_BAD_REQUEST)
        path = os.path.join(_flow_dir(), f"{uuid_flow}.txt")
        if not os.path.exists(path):
            return Response({"detail": "No existe el flujo solicitado."}, status=status.HTTP_404_NOT_FOUND)

        download = (request.query_params.get("download") or "false").lower() in ("1", "true", "yes")
        if download:
            return FileResponse(
                open(path, "rb"),
                as_attachment=True,
                filename=f"{uuid_flow}.txt",
                content_type="text/plain; charset=utf-8"
            )

        payload = _read_json_file(path) or {"uuid_flow": uuid_flow, "detail": "no disponible"}
        payload.setdefault("_links", {})
        payload["_links"]["self"] = request.build_absolute_uri()
        return Response(payload, status=200)
