#!/usr/bin/env python3
"""
Screen sessions for the RoboDoc dashboard.

A session is the state of one screen: the selected segment, the advisory
"processing" flag, the latest outcome and the preview on display. Uploads
arriving while a request is in flight are turned away, never queued.

Two screens exist:
- Body scan: pick any segment, upload, download a text report
- Guided checkup: patient info, then one step per segment, then a final report

Author: RoboDoc Team
License: MIT
"""

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

from ..errors import InvalidSegment, UploadRejected
from ..imaging.upload_validator import Upload, UploadValidator
from ..inference.pipeline import DiagnosisOutcome, DiagnosisPipeline
from .previews import PreviewStore

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "An image is already being processed. Please wait."
PROCESSING_MESSAGE = "Processing..."
SELECT_SEGMENT_MESSAGE = "Please select a segment before uploading an image"
INVALID_STEP_MESSAGE = "Please select a valid step"
NO_REPORT_MESSAGE = "No valid diagnosis available to download"

STEP_SEGMENTS = {1: 'skin', 2: 'scalp', 3: 'eye', 4: 'ear', 5: 'teeth'}
FINAL_STEP = 6

FINAL_REPORT_LINES = (
    "Overall Health Score: B",
    "Recommendations: Maintain a balanced diet and regular exercise.",
)


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


class ScreeningSession:
    """
    Body scan screen state.

    Attributes:
        pipeline: Diagnosis pipeline shared by all screens
        previews: Preview store shared by all screens
        validator: Upload checks run before the pipeline
        segment: Selected segment, if any
        processing: True while a request is in flight
        result_message: Text currently shown under the image
        latest: Outcome of the last completed request
    """

    missing_segment_message = SELECT_SEGMENT_MESSAGE

    def __init__(
        self,
        pipeline: DiagnosisPipeline,
        previews: PreviewStore,
        validator: Optional[UploadValidator] = None
    ) -> None:
        self.pipeline = pipeline
        self.previews = previews
        self.validator = validator or UploadValidator(pipeline.settings)

        self.segment: Optional[str] = None
        self.processing = False
        self.result_message = ''
        self.latest: Optional[DiagnosisOutcome] = None
        self.preview_token: Optional[str] = None

        self.lock = threading.Lock()

    @property
    def image_url(self) -> Optional[str]:
        if self.preview_token is None:
            return None
        return self.previews.url_for(self.preview_token)

    def current_segment(self) -> Optional[str]:
        return self.segment

    def select_segment(self, segment: str) -> str:
        """
        Choose the segment for the next upload.

        Returns:
            Message to display

        Raises:
            InvalidSegment: If the segment is not configured
        """
        if not isinstance(segment, str) or segment not in self.pipeline.segments:
            raise InvalidSegment(segment)

        with self.lock:
            if self.processing:
                return BUSY_MESSAGE
            self.segment = segment
            self.result_message = f"Selected {segment} for analysis"
            return self.result_message

    def submit(self, upload: Optional[Upload]) -> DiagnosisOutcome:
        """
        Validate an upload and screen it for the current segment.

        Args:
            upload: The uploaded image

        Returns:
            Outcome whose message is ready for display
        """
        segment = self.current_segment()

        with self.lock:
            if self.processing:
                return DiagnosisOutcome.failure(segment, UploadRejected(BUSY_MESSAGE))
            if segment is None:
                outcome = DiagnosisOutcome.failure(
                    None, UploadRejected(self.missing_segment_message)
                )
                self.result_message = outcome.message
                return outcome
            self.processing = True
            self.result_message = PROCESSING_MESSAGE

        try:
            try:
                self.validator.validate(upload)
            except UploadRejected as e:
                outcome = DiagnosisOutcome.failure(segment, e)
            else:
                # Only an accepted upload replaces the image on display
                self._revoke_preview()
                outcome = self.pipeline.run(upload.data, segment)
                if outcome.ok:
                    self.preview_token = self.previews.create(upload.data, upload.mime_type)
                    outcome.result.image_url = self.image_url

            self.latest = outcome
            self.result_message = outcome.message
            return outcome

        finally:
            with self.lock:
                self.processing = False

    def _revoke_preview(self) -> None:
        if self.preview_token is not None:
            self.previews.revoke(self.preview_token)
            self.preview_token = None

    def reset(self) -> None:
        """Clear the result and the displayed preview."""
        self._revoke_preview()
        self.latest = None
        self.result_message = ''

    def report(self) -> Optional[Tuple[str, str]]:
        """
        Build the downloadable diagnosis report.

        Returns:
            (filename, text), or None when there is nothing valid to download
        """
        if self.processing or self.latest is None or not self.latest.ok:
            self.result_message = NO_REPORT_MESSAGE
            return None

        return f"diagnosis_report_{_timestamp_ms()}.txt", self.latest.message

    def get_state(self) -> Dict[str, Any]:
        return {
            'segment': self.current_segment(),
            'processing': self.processing,
            'result': self.result_message,
            'image_url': self.image_url,
            'outcome': self.latest.to_dict() if self.latest else None
        }


class CheckupSession(ScreeningSession):
    """
    Guided checkup screen state.

    Step 0 collects patient info, steps 1-5 screen one segment each, step 6
    shows the final report.
    """

    missing_segment_message = INVALID_STEP_MESSAGE

    def __init__(
        self,
        pipeline: DiagnosisPipeline,
        previews: PreviewStore,
        validator: Optional[UploadValidator] = None
    ) -> None:
        super().__init__(pipeline, previews, validator)
        self.step = 0
        self.patient_name = ''
        self.patient_age: Optional[int] = None
        self.step_results: Dict[str, str] = {}

    def current_segment(self) -> Optional[str]:
        return STEP_SEGMENTS.get(self.step)

    def select_segment(self, segment: str) -> str:
        raise InvalidSegment(segment)

    def step_title(self) -> str:
        if self.step == 0:
            return "Step 1: Patient Info"
        if self.step == FINAL_STEP:
            return "Final Report"
        segment = STEP_SEGMENTS[self.step]
        return f"Step {self.step + 1}: {segment.capitalize()} Health"

    def set_patient(self, name: str, age: Any) -> str:
        """Record patient name and age. Returns the message to display."""
        name = name.strip() if isinstance(name, str) else ''
        try:
            age = int(age)
        except (TypeError, ValueError):
            age = None

        if not name or age is None or age < 0:
            self.result_message = "Please enter name and age."
            return self.result_message

        self.patient_name = name
        self.patient_age = age
        self.result_message = f"Checkup submitted for {name}, Age: {age}. Results pending."
        return self.result_message

    def submit(self, upload: Optional[Upload]) -> DiagnosisOutcome:
        outcome = super().submit(upload)
        if outcome.ok:
            self.step_results[outcome.segment] = outcome.message
        return outcome

    def _move(self, delta: int) -> bool:
        with self.lock:
            if self.processing:
                return False
            target = self.step + delta
            if target < 0 or target > FINAL_STEP:
                return False
            self.step = target
        self.reset()
        return True

    def next_step(self) -> bool:
        """Advance one step. Refused while processing or at the final step."""
        return self._move(1)

    def previous_step(self) -> bool:
        """Go back one step. Refused while processing or at step 0."""
        return self._move(-1)

    def final_report(self) -> Optional[Tuple[str, str]]:
        """
        Build the downloadable final report.

        Returns:
            (filename, text), or None before the final step
        """
        if self.step != FINAL_STEP:
            return None

        lines = []
        if self.patient_name:
            lines.append(f"Patient: {self.patient_name}, Age: {self.patient_age}")
        for step in sorted(STEP_SEGMENTS):
            segment = STEP_SEGMENTS[step]
            if segment in self.step_results:
                lines.append(self.step_results[segment])
        lines.extend(FINAL_REPORT_LINES)

        return f"final_report_{_timestamp_ms()}.txt", "\n".join(lines)

    def get_state(self) -> Dict[str, Any]:
        state = super().get_state()
        state.update({
            'step': self.step,
            'title': self.step_title(),
            'patient': {'name': self.patient_name, 'age': self.patient_age},
            'step_results': dict(self.step_results)
        })
        return state
