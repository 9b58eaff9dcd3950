"""
Relais streaming SSE: framing, heartbeat et lecture des flux amont.

Pourquoi une file + tâche productrice:
- Le heartbeat doit être émis même quand l'amont ne produit rien
  (modèles "thinking" silencieux pendant des dizaines de secondes)
- Une StreamingResponse ne peut écrire que depuis son générateur: heartbeat
  et frames passent donc par la même file
- Le timer et la tâche productrice sont annulés sur toutes les sorties
  (fin normale, erreur, déconnexion du client)
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from ..core.constants import HEARTBEAT_FRAME

logger = logging.getLogger(__name__)

# Types d'erreurs streaming connus
STREAMING_ERROR_TYPES = {
    "read_error": "Connexion interrompue par le provider",
    "connect_error": "Impossible de se connecter au provider",
    "timeout_error": "Timeout lors de la lecture du stream",
    "decode_error": "Erreur de décodage des données",
    "unknown": "Erreur streaming inconnue"
}


# ============================================================================
# FRAMING SSE
# ============================================================================

def sse_data(payload: Any) -> str:
    """Frame `data: <json>`."""
    return f"data: {json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n\n"


def sse_event(event: str, payload: Any) -> str:
    """Frame nommée `event: <type>` + `data: <json>` (format Claude)."""
    data = json.dumps(payload, ensure_ascii=False, separators=(',', ':'))
    return f"event: {event}\ndata: {data}\n\n"


def classify_stream_error(error: Exception) -> str:
    """Classe une exception HTTPX dans STREAMING_ERROR_TYPES."""
    if isinstance(error, httpx.ReadError):
        return "read_error"
    if isinstance(error, httpx.ConnectError):
        return "connect_error"
    if isinstance(error, httpx.TimeoutException):
        return "timeout_error"
    if isinstance(error, (json.JSONDecodeError, UnicodeDecodeError)):
        return "decode_error"
    return "unknown"


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """
    Itère sur les payloads `data:` d'une réponse SSE amont.

    Les commentaires, lignes `event:` et le marqueur [DONE] sont ignorés.
    """
    async for line in response.aiter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload or payload == "[DONE]":
            continue
        yield payload


def parse_sse_json(payload: str, tag: str = "upstream") -> Optional[dict]:
    """Décode un payload SSE JSON; None (loggé) si illisible."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("[%s] payload SSE ignoré: %s", tag, payload[:200])
        return None
    return data if isinstance(data, dict) else None


# ============================================================================
# HEARTBEAT
# ============================================================================

class Heartbeat:
    """
    Timer de keep-alive: dépose HEARTBEAT_FRAME dans la file à intervalle fixe.

    Args:
        queue: File partagée avec le relais
        interval: Intervalle en secondes
    """

    def __init__(self, queue: asyncio.Queue, interval: float):
        self.queue = queue
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.beats = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            self.beats += 1
            await self.queue.put(HEARTBEAT_FRAME)

    async def stop(self):
        """Annule le timer (idempotent)."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class _StreamEnd:
    pass


class _StreamFailure:
    def __init__(self, error: BaseException):
        self.error = error


async def relay_with_heartbeat(
    frames: AsyncIterator[str],
    interval: float
) -> AsyncIterator[str]:
    """
    Relaie des frames SSE en intercalant des heartbeats.

    Args:
        frames: Générateur de frames déjà encodées
        interval: Intervalle du heartbeat en secondes

    Yields:
        Frames et heartbeats, dans l'ordre d'arrivée

    Raises:
        Toute exception levée par `frames` (après nettoyage)
    """
    queue: asyncio.Queue = asyncio.Queue()
    heartbeat = Heartbeat(queue, interval)

    async def pump():
        try:
            async for frame in frames:
                await queue.put(frame)
        except Exception as e:
            await queue.put(_StreamFailure(e))
        else:
            await queue.put(_StreamEnd())
        finally:
            aclose = getattr(frames, "aclose", None)
            if aclose is not None:
                await aclose()

    if interval > 0:
        heartbeat.start()
    producer = asyncio.create_task(pump())
    try:
        while True:
            item = await queue.get()
            if isinstance(item, _StreamEnd):
                break
            if isinstance(item, _StreamFailure):
                raise item.error
            yield item
    finally:
        await heartbeat.stop()
        if not producer.done():
            producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                pass
