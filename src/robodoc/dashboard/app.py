#!/usr/bin/env python3
"""
RoboDoc Web Application

Flask application exposing the screening screens and the chat proxy as a
JSON API:

- Body scan: select a segment, upload an image, download a report
- Guided checkup: patient info, one screening step per segment, final report
- Chat: forward messages to the hosted chat completion API
- Previews: serve the screened image while it is on display

Author: RoboDoc Team
License: MIT
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request, Response

from ..config import Settings, load_settings
from ..errors import (
    ImageDecodeError, InvalidSegment, NetworkError, ScreeningError, UploadRejected
)
from ..imaging.upload_validator import TOO_LARGE_MESSAGE, Upload, UploadValidator
from ..inference.model_loader import runtime_available
from ..inference.pipeline import DiagnosisOutcome, DiagnosisPipeline
from ..inference.resources import live_resources
from ..llm.chat_client import ChatClient
from ..llm.prompt_builder import validate_messages
from .previews import PreviewStore
from .session import BUSY_MESSAGE, CheckupSession, ScreeningSession

logger = logging.getLogger(__name__)

CHAT_FAILURE_MESSAGE = 'Failed to process request'
BAD_BODY_MESSAGE = 'Request body must be a JSON object'


class DashboardState:
    """Services and screen sessions shared by the request handlers."""

    def __init__(
        self,
        settings: Settings,
        pipeline: Optional[DiagnosisPipeline] = None,
        chat_client: Optional[ChatClient] = None
    ) -> None:
        self.settings = settings
        self.pipeline = pipeline or DiagnosisPipeline(settings.segments, settings.inference)
        self.chat_client = chat_client or ChatClient(settings.chat)
        self.previews = PreviewStore(max_entries=settings.dashboard.max_previews)

        validator = UploadValidator(self.pipeline.settings)
        self.body_scan = ScreeningSession(self.pipeline, self.previews, validator)
        self.checkup = CheckupSession(self.pipeline, self.previews, validator)


def _outcome_status(outcome: DiagnosisOutcome) -> int:
    """HTTP status for a screening outcome."""
    if outcome.ok:
        return 200
    if outcome.message == BUSY_MESSAGE:
        return 409
    if isinstance(outcome.error, (UploadRejected, InvalidSegment, ImageDecodeError)):
        return 400
    return 500


def _json_object() -> Optional[Dict[str, Any]]:
    """JSON body of the current request; {} when absent, None when not an object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _read_upload() -> Optional[Upload]:
    """Read the multipart ``file`` field of the current request."""
    file = request.files.get('file')
    if file is None or not file.filename:
        return None
    return Upload(data=file.read(), mime_type=file.mimetype, filename=file.filename)


def _text_attachment(report: Tuple[str, str]) -> Response:
    filename, text = report
    return Response(
        text,
        mimetype='text/plain',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )


def create_app(
    config_dir: Optional[Path] = None,
    settings: Optional[Settings] = None,
    pipeline: Optional[DiagnosisPipeline] = None,
    chat_client: Optional[ChatClient] = None
) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_dir: Directory with the YAML config files
        settings: Pre-loaded settings (takes precedence over config_dir)
        pipeline: Diagnosis pipeline to use instead of building one
        chat_client: Chat client to use instead of building one

    Returns:
        Configured Flask application
    """
    settings = settings or load_settings(config_dir)
    state = DashboardState(settings, pipeline=pipeline, chat_client=chat_client)

    app = Flask(__name__)
    app.extensions['robodoc'] = state

    dashboard_config = settings.dashboard
    app.config['SECRET_KEY'] = os.environ.get(
        dashboard_config.secret_key_env,
        'dev-secret-key-change-in-production'
    )
    app.config['DEBUG'] = dashboard_config.debug
    # Oversized uploads must reach the validator to get its message
    app.config['MAX_CONTENT_LENGTH'] = settings.inference.max_upload_bytes * 2

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(413)
    def too_large(_error):
        return jsonify({'ok': False, 'message': TOO_LARGE_MESSAGE}), 413

    @app.route('/')
    def index():
        return jsonify({'message': 'RoboDoc API is running'})

    @app.route('/api/health')
    def health():
        """Runtime availability and configured segments."""
        return jsonify({
            'runtime_available': runtime_available(),
            'loader': state.pipeline.loader.get_info(),
            'pipeline': state.pipeline.get_stats(),
            'chat': state.chat_client.get_stats(),
            'live_resources': live_resources(),
            'previews': len(state.previews)
        })

    @app.route('/api/segments')
    def segments():
        return jsonify([
            {'name': spec.name, 'title': spec.title, 'width': spec.width, 'height': spec.height}
            for spec in settings.segments.values()
        ])

    # Body scan

    @app.route('/api/body-scan')
    def body_scan_state():
        return jsonify(state.body_scan.get_state())

    @app.route('/api/body-scan/segment', methods=['POST'])
    def body_scan_segment():
        data = _json_object()
        if data is None:
            return jsonify({'error': BAD_BODY_MESSAGE}), 400
        try:
            message = state.body_scan.select_segment(data.get('segment', ''))
        except InvalidSegment as e:
            return jsonify({'ok': False, 'message': e.display_message()}), 400
        status = 409 if message == BUSY_MESSAGE else 200
        return jsonify({'ok': status == 200, 'message': message}), status

    @app.route('/api/body-scan/upload', methods=['POST'])
    def body_scan_upload():
        outcome = state.body_scan.submit(_read_upload())
        return jsonify(outcome.to_dict()), _outcome_status(outcome)

    @app.route('/api/body-scan/report')
    def body_scan_report():
        report = state.body_scan.report()
        if report is None:
            return jsonify({'error': state.body_scan.result_message}), 400
        return _text_attachment(report)

    @app.route('/api/body-scan/reset', methods=['POST'])
    def body_scan_reset():
        state.body_scan.reset()
        return jsonify(state.body_scan.get_state())

    # Guided checkup

    @app.route('/api/checkup')
    def checkup_state():
        return jsonify(state.checkup.get_state())

    @app.route('/api/checkup/patient', methods=['POST'])
    def checkup_patient():
        data = _json_object()
        if data is None:
            return jsonify({'error': BAD_BODY_MESSAGE}), 400
        message = state.checkup.set_patient(data.get('name', ''), data.get('age'))
        ok = message.startswith('Checkup submitted')
        return jsonify({'ok': ok, 'message': message}), 200 if ok else 400

    @app.route('/api/checkup/next', methods=['POST'])
    def checkup_next():
        moved = state.checkup.next_step()
        return jsonify({'ok': moved, **state.checkup.get_state()}), 200 if moved else 409

    @app.route('/api/checkup/previous', methods=['POST'])
    def checkup_previous():
        moved = state.checkup.previous_step()
        return jsonify({'ok': moved, **state.checkup.get_state()}), 200 if moved else 409

    @app.route('/api/checkup/upload', methods=['POST'])
    def checkup_upload():
        outcome = state.checkup.submit(_read_upload())
        return jsonify(outcome.to_dict()), _outcome_status(outcome)

    @app.route('/api/checkup/report')
    def checkup_report():
        report = state.checkup.final_report()
        if report is None:
            return jsonify({'error': 'Final report is available at the last step'}), 400
        return _text_attachment(report)

    # Previews

    @app.route('/previews/<token>')
    def preview(token: str):
        stored = state.previews.get(token)
        if stored is None:
            return jsonify({'error': 'Preview not available'}), 404
        data, mime_type = stored
        return Response(data, mimetype=mime_type)

    # Chat proxy

    @app.route('/api/groq', methods=['POST'])
    def groq_proxy():
        """Forward a message list verbatim and return the raw completion."""
        data = _json_object()
        if data is None:
            return jsonify({'error': BAD_BODY_MESSAGE}), 400
        try:
            messages = validate_messages(data.get('messages'))
            return jsonify(state.chat_client.create_chat_completion(messages))
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        except NetworkError as e:
            return jsonify({'error': str(e)}), 500

    @app.route('/api/chat', methods=['POST'])
    def chat():
        """Answer a single message with the assistant."""
        data = _json_object()
        if data is None:
            return jsonify({'error': BAD_BODY_MESSAGE}), 400
        message = data.get('message')
        if not isinstance(message, str) or not message.strip():
            return jsonify({'error': 'message is required'}), 400

        try:
            return jsonify({'response': state.chat_client.reply(message)})
        except ScreeningError as e:
            logger.error(f"Chat request failed: {e}")
            return jsonify({
                'error': CHAT_FAILURE_MESSAGE,
                'message': state.chat_client.prompt_builder.failure_message(e, message)
            }), 500

    return app


def run_dashboard(
    host: Optional[str] = None,
    port: Optional[int] = None,
    config_dir: Optional[Path] = None,
    settings: Optional[Settings] = None
) -> None:
    """
    Run the web application.

    Args:
        host: Host to bind to (default from system_config.yaml)
        port: Port to listen on (default from system_config.yaml)
        config_dir: Directory with the YAML config files
        settings: Pre-loaded settings (takes precedence over config_dir)
    """
    settings = settings or load_settings(config_dir)
    app = create_app(settings=settings)

    host = host or settings.dashboard.host
    port = port or settings.dashboard.port

    try:
        logger.info(f"Starting RoboDoc at http://{host}:{port}")
        app.run(host=host, port=port, threaded=True)
    finally:
        app.extensions['robodoc'].pipeline.close()
