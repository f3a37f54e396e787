import asyncio
import logging

from pipecat.frames.frames import (
    CancelFrame,
    EndFrame,
    Frame,
    InterimTranscriptionFrame,
    TranscriptionFrame,
    TTSSpeakFrame,
)
from pipecat.processors.frame_processor import FrameDirection, FrameProcessor

from callbrain.engine import OrchestrationEngine, TurnResult
from callbrain.intents import Route
from callbrain.session import CallContext

logger = logging.getLogger(__name__)


class TurnProcessor(FrameProcessor):
    """Pipecat processor that runs each final transcription through the engine.

    Sits after STT in the pipeline:
      transport.input() -> STT -> [TurnProcessor] -> TTS -> transport.output()

    On each TranscriptionFrame the engine decides the next move and the
    processor speaks its next_prompt. END_CALL routes hang up after the
    goodbye has had time to play. An EndFrame or CancelFrame closes the call
    context, which cancels any routing still in flight.
    """

    END_CALL_DELAY_S = 3.0

    def __init__(self, engine: OrchestrationEngine, ctx: CallContext, **kwargs):
        super().__init__(**kwargs)
        self.engine = engine
        self.ctx = ctx
        self.last_result: TurnResult | None = None
        self._end_task: asyncio.Task | None = None

    async def process_frame(self, frame: Frame, direction: FrameDirection):
        await super().process_frame(frame, direction)

        if isinstance(frame, TranscriptionFrame) and frame.text.strip():
            await self._handle_transcription(frame)
        elif isinstance(frame, InterimTranscriptionFrame):
            # Partial speech; only final transcriptions become turns
            await self.push_frame(frame, direction)
        elif isinstance(frame, (EndFrame, CancelFrame)):
            self.ctx.close()
            await self.push_frame(frame, direction)
        else:
            await self.push_frame(frame, direction)

    async def _handle_transcription(self, frame: TranscriptionFrame):
        text = frame.text.strip()
        logger.debug("[%s] transcription: '%s'", self.ctx.call_id, text)
        result = await self.engine.process_turn(self.ctx, text)
        if result is None:
            return
        self.last_result = result

        await self.push_frame(TTSSpeakFrame(text=result.next_prompt), FrameDirection.DOWNSTREAM)

        if result.decision.route == Route.END_CALL and self._end_task is None:
            self._end_task = asyncio.create_task(self._delayed_end_call(self.END_CALL_DELAY_S))

    async def _delayed_end_call(self, delay: float = 3.0):
        """Push EndFrame after a delay to allow TTS to finish speaking."""
        await asyncio.sleep(delay)
        self.ctx.close()
        await self.push_frame(EndFrame(), FrameDirection.DOWNSTREAM)
