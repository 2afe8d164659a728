"""
Tests for the Proctor Session Controller

Permission gating, lab start, violation-driven termination, justifications,
completion, retake and late analysis results.
"""

import asyncio

import pytest


async def settle(controller):
    """Wait for completion and every pending log append"""
    await controller.wait_finalized()
    for _ in range(100):
        if controller.session is None or not controller.registry.active(f"{controller.session.key.stem}:io"):
            return
        await asyncio.sleep(0.01)


class TestSessionKey:
    """Tests for artifact naming"""

    def test_derive(self):
        from datetime import datetime, timezone
        from labproctor.proctor.models import Candidate, SessionKey

        started = datetime(2026, 2, 7, 5, 57, 15, 992000, tzinfo=timezone.utc)
        key = SessionKey.derive(Candidate(user_id="999999", username="user1"), "222222", started)

        assert key.stem == "999999_222222_2026-02-07T05-57-15-992Z"
        assert key.folder == "user1_999999_2026-02-07_05-57-15"

    def test_format_duration(self):
        from labproctor.proctor.models import format_duration

        assert format_duration(0) == "00:00:00"
        assert format_duration(3725.9) == "01:02:05"
        assert format_duration(-4) == "00:00:00"


class TestPermissions:
    """Tests for permission gating"""

    @pytest.mark.asyncio
    async def test_start_requires_every_permission(self, make_controller):
        from labproctor.proctor import PermissionsIncompleteError, SessionState

        controller = make_controller()
        controller.grant_screen()
        controller.grant_camera_and_mic()

        with pytest.raises(PermissionsIncompleteError):
            await controller.start_lab()

        assert controller.state == SessionState.IDLE
        assert controller.gateway.calls["start_assessment"] == []

    def test_window_share_is_rejected(self, make_controller):
        from conftest import FakeProvider
        from labproctor.proctor import ScreenSurfaceError

        provider = FakeProvider(surface="window")
        controller = make_controller(provider=provider)

        with pytest.raises(ScreenSurfaceError):
            controller.grant_screen()

        assert controller.permissions.screen is False
        assert provider.screen_tracks[0].is_live is False

    def test_camera_denial_keeps_flags_clear(self, make_controller):
        from conftest import FakeProvider
        from labproctor.proctor import PermissionDeniedError

        controller = make_controller(provider=FakeProvider(deny_camera=True))

        with pytest.raises(PermissionDeniedError):
            controller.grant_camera_and_mic()

        assert controller.permissions.camera is False
        assert controller.permissions.mic is False

    def test_clipboard_probe(self, make_controller):
        from conftest import FakeProvider

        assert make_controller().grant_clipboard() is True
        assert make_controller(provider=FakeProvider(clipboard=False)).grant_clipboard() is False

    def test_leaving_fullscreen_while_idle_revokes_grant(self, make_controller):
        controller = make_controller()
        controller.request_fullscreen()
        assert controller.permissions.fullscreen is True

        controller.on_fullscreen_change(False)

        assert controller.permissions.fullscreen is False
        assert controller.warning_count == 0


class TestLabStart:
    """Tests for idle -> starting -> running"""

    @pytest.mark.asyncio
    async def test_start_reaches_running(self, make_controller, start_running):
        from labproctor.proctor import SessionState
        from labproctor.proctor.models import IdentityPhase

        controller = await start_running(make_controller())
        try:
            assert controller.state == SessionState.RUNNING
            assert controller.starting_progress == 100
            assert controller.session.remaining_seconds == 3600
            assert controller.session.key.folder == "user1_999999_2026-02-07_05-57-15"
            assert controller.identity.phase == IdentityPhase.REGISTERING
            assert controller.gateway.calls["start_assessment"] == [("999999", "222222", 3)]
        finally:
            await controller.on_unload()

    @pytest.mark.asyncio
    async def test_max_attempts_keeps_controller_idle(self, make_controller, gateway):
        from labproctor.proctor import MaxAttemptsReachedError, SessionState

        gateway.start_error = MaxAttemptsReachedError("Maximum attempts reached")
        controller = make_controller()
        controller.grant_screen()
        controller.grant_camera_and_mic()
        controller.grant_clipboard()
        controller.request_fullscreen()

        with pytest.raises(MaxAttemptsReachedError):
            await controller.start_lab()

        assert controller.state == SessionState.IDLE
        assert controller.session is None

    @pytest.mark.asyncio
    async def test_recorders_upload_on_finish(self, make_controller, start_running):
        from labproctor.proctor.models import StreamType

        controller = await start_running(make_controller())
        await asyncio.sleep(0.2)
        controller.finish()
        await settle(controller)

        segments = controller.gateway.calls["upload_segment"]
        for stream in (StreamType.SCREEN, StreamType.CAMERA):
            sequences = [s.sequence for s in segments if s.stream_type == stream]
            assert sequences == list(range(1, len(sequences) + 1))
            assert sequences
        assert controller.media.screen is None
        assert controller.media.camera is None


class TestViolationTermination:
    """Tests for the warning cap on a running session"""

    @pytest.mark.asyncio
    async def test_five_fullscreen_exits_fail_the_session(self, make_controller, start_running):
        from labproctor.proctor import SessionState, ViolationCategory

        controller = await start_running(make_controller())
        for _ in range(5):
            controller.on_fullscreen_change(False)
            controller.on_fullscreen_change(True)

        assert controller.state == SessionState.FAILED
        assert controller.failed is True
        assert controller.warning_count == 5

        # Reports after termination are dropped
        controller.on_visibility_change(False)
        assert controller.warning_count == 5

        await settle(controller)
        completions = controller.gateway.calls["complete_assessment"]
        assert len(completions) == 1
        assert completions[0][3] is True
        assert controller.result == {"success": True, "score": 0, "result": "Fail"}

        logged = controller.gateway.calls["append_log"]
        assert sorted(event.ordinal for _, event in logged) == [1, 2, 3, 4, 5]
        assert all(event.category == ViolationCategory.FULLSCREEN_EXIT for _, event in logged)

    @pytest.mark.asyncio
    async def test_mixed_signals_share_one_counter(self, make_controller, start_running):
        from labproctor.proctor import SessionState

        controller = await start_running(make_controller())
        controller.on_visibility_change(False)
        controller.on_visibility_change(True)
        controller.on_fullscreen_change(False)
        controller.request_fullscreen("Notification popup")
        controller.media.screen.video_track.end()
        assert controller.warning_count == 3
        assert controller.permissions.screen is False

        controller.on_visibility_change(False)
        controller.on_fullscreen_change(False)

        assert controller.state == SessionState.FAILED
        await settle(controller)
        assert len(controller.gateway.calls["complete_assessment"]) == 1

    @pytest.mark.asyncio
    async def test_exempt_course_keeps_running(self, make_controller, start_running):
        from labproctor.proctor import CourseConfig, SessionState

        course = CourseConfig(course_id="222222", allowed_minutes=60, exempt_from_cap=True)
        controller = await start_running(make_controller(course=course))
        try:
            for _ in range(8):
                controller.on_fullscreen_change(False)

            assert controller.state == SessionState.RUNNING
            assert controller.warning_count == 8
            assert controller.banner is not None
        finally:
            await controller.on_unload()

    @pytest.mark.asyncio
    async def test_exempt_course_from_settings(self, make_controller, start_running, proctor_settings):
        from labproctor.proctor import SessionState

        config = proctor_settings.model_copy(update={"EXEMPT_COURSE_IDS": ["222222"]})
        controller = await start_running(make_controller(config=config))
        try:
            for _ in range(6):
                controller.on_visibility_change(False)
            assert controller.state == SessionState.RUNNING
        finally:
            await controller.on_unload()

    @pytest.mark.asyncio
    async def test_banner_shown_then_expires(self, make_controller, start_running, clock):
        from labproctor.proctor import ViolationCategory

        controller = await start_running(make_controller())
        try:
            controller.on_fullscreen_change(False)
            assert controller.banner.category == ViolationCategory.FULLSCREEN_EXIT
            assert controller.snapshot()["banner"]["reason"] == "Exited fullscreen mode"

            clock.advance(10)
            assert controller.banner is None
        finally:
            await controller.on_unload()


class TestJustification:
    """Tests for fullscreen re-entry after a violation"""

    @pytest.mark.asyncio
    async def test_reentry_requires_justification(self, make_controller, start_running):
        from labproctor.proctor import JustificationRequiredError

        controller = await start_running(make_controller())
        try:
            assert controller.justification_required is False
            controller.on_fullscreen_change(False)
            assert controller.justification_required is True

            with pytest.raises(JustificationRequiredError):
                controller.request_fullscreen()
            with pytest.raises(JustificationRequiredError):
                controller.request_fullscreen("   ")
            assert controller.fullscreen_active is False

            controller.request_fullscreen("Pressed Esc by accident")
            assert controller.fullscreen_active is True
            assert controller.justification_required is False
            assert controller.justifications[0].count == 1
            assert controller.justifications[0].reason == "Pressed Esc by accident"
        finally:
            await controller.on_unload()

    @pytest.mark.asyncio
    async def test_justifications_sent_on_completion(self, make_controller, start_running):
        controller = await start_running(make_controller())
        controller.on_fullscreen_change(False)
        controller.request_fullscreen("Pressed Esc by accident")
        controller.finish()
        await settle(controller)

        _, _, justifications, is_failure = controller.gateway.calls["complete_assessment"][0]
        assert is_failure is False
        assert justifications[0]["count"] == 1
        assert justifications[0]["reason"] == "Pressed Esc by accident"
        assert controller.result["result"] == "Pass"


class TestCompletion:
    """Tests for countdown and candidate-initiated completion"""

    @pytest.mark.asyncio
    async def test_countdown_completes_at_zero(self, make_controller, start_running):
        from labproctor.proctor import SessionState

        controller = await start_running(make_controller())
        controller.session.remaining_seconds = 2

        controller.tick_countdown()
        assert controller.state == SessionState.RUNNING
        assert controller.session.remaining_seconds == 1

        controller.tick_countdown()
        assert controller.state == SessionState.COMPLETE
        assert controller.complete is True
        assert controller.failed is False

        await settle(controller)
        assert controller.gateway.calls["complete_assessment"][0][3] is False

    @pytest.mark.asyncio
    async def test_completion_is_issued_once(self, make_controller, start_running):
        from labproctor.proctor import InvalidTransitionError

        controller = await start_running(make_controller())
        controller.finish()
        controller.tick_countdown()
        with pytest.raises(InvalidTransitionError):
            controller.finish()

        await settle(controller)
        assert len(controller.gateway.calls["complete_assessment"]) == 1

    @pytest.mark.asyncio
    async def test_leaving_running_stops_timers(self, make_controller, start_running):
        controller = await start_running(make_controller())
        stem = controller.session.key.stem
        assert controller.registry.active(stem) == 2

        controller.finish()
        await settle(controller)
        await asyncio.sleep(0)

        assert controller.registry.active(stem) == 0


class TestRetake:
    """Tests for retake and late results"""

    @pytest.mark.asyncio
    async def test_retake_resets_to_idle(self, make_controller, start_running):
        from labproctor.proctor import SessionState

        controller = await start_running(make_controller())
        for _ in range(5):
            controller.on_fullscreen_change(False)
        await settle(controller)
        epoch = controller.epoch

        await controller.retake()

        assert controller.state == SessionState.IDLE
        assert controller.epoch > epoch
        assert controller.session is None
        assert controller.warning_count == 0
        assert controller.result is None
        assert controller.all_permissions_granted is False
        assert controller.snapshot()["identity_phase"] == "idle"

        await start_running(controller)
        try:
            assert controller.state == SessionState.RUNNING
            assert controller.warning_count == 0
            assert len(controller.gateway.calls["start_assessment"]) == 2
        finally:
            await controller.on_unload()

    @pytest.mark.asyncio
    async def test_reset_attempts_clears_record(self, make_controller, start_running):
        controller = await start_running(make_controller())
        controller.finish()
        await settle(controller)

        await controller.reset_attempts()

        assert controller.gateway.calls["reset_assessment"] == [("999999", "222222")]

    @pytest.mark.asyncio
    async def test_retake_during_starting_cancels_start(self, make_controller, proctor_settings):
        from labproctor.proctor import SessionState

        config = proctor_settings.model_copy(update={"STARTING_DURATION_SECONDS": 5})
        controller = make_controller(config=config)
        controller.grant_screen()
        controller.grant_camera_and_mic()
        controller.grant_clipboard()
        controller.request_fullscreen()
        starter = await controller.start_lab()
        assert controller.state == SessionState.STARTING

        await controller.retake()
        await asyncio.gather(starter, return_exceptions=True)

        assert starter.cancelled()
        assert controller.state == SessionState.IDLE
        assert controller.session is None

    @pytest.mark.asyncio
    async def test_alert_counts_while_running(self, make_controller, start_running, gateway):
        from labproctor.proctor import ViolationCategory

        gateway.analyze_payload = {
            "alert": True,
            "reason": "Second person visible",
            "behavior": {"faceDetected": True, "multipleFaces": True, "talkingToSomeone": True}
        }
        controller = await start_running(make_controller())
        try:
            await controller.scheduler.tick(controller.session, controller.epoch)

            assert controller.warning_count == 1
            assert controller.events[0].category == ViolationCategory.IDENTITY_ALERT
        finally:
            await controller.on_unload()

    @pytest.mark.asyncio
    async def test_late_alert_after_retake_is_discarded(self, make_controller, start_running, gateway, telemetry):
        gateway.gate = asyncio.Event()
        gateway.analyze_payload = {
            "alert": True,
            "reason": "Second person visible",
            "behavior": {"faceDetected": True, "multipleFaces": True, "talkingToSomeone": False}
        }
        controller = await start_running(make_controller())
        tick = asyncio.ensure_future(controller.scheduler.tick(controller.session, controller.epoch))
        for _ in range(200):
            if gateway.calls["analyze"]:
                break
            await asyncio.sleep(0.01)

        await controller.retake()
        gateway.gate.set()
        await tick

        assert controller.warning_count == 0
        assert controller.events == []
        assert telemetry.count("violations_discarded") >= 1

    @pytest.mark.asyncio
    async def test_late_alert_after_completion_is_discarded(self, make_controller, start_running, gateway):
        gateway.gate = asyncio.Event()
        gateway.analyze_payload = {
            "alert": True,
            "reason": "Second person visible",
            "behavior": {"faceDetected": True, "multipleFaces": True, "talkingToSomeone": False}
        }
        controller = await start_running(make_controller())
        tick = asyncio.ensure_future(controller.scheduler.tick(controller.session, controller.epoch))
        for _ in range(200):
            if gateway.calls["analyze"]:
                break
            await asyncio.sleep(0.01)

        controller.finish()
        gateway.gate.set()
        await tick
        await settle(controller)

        assert controller.warning_count == 0
        assert controller.gateway.calls["append_log"] == []

    @pytest.mark.asyncio
    async def test_late_start_response_after_retake_is_ignored(self, make_controller, gateway):
        from labproctor.proctor import InvalidTransitionError, SessionState

        gateway.start_gate = asyncio.Event()
        controller = make_controller()
        controller.grant_screen()
        controller.grant_camera_and_mic()
        controller.grant_clipboard()
        controller.request_fullscreen()
        start = asyncio.ensure_future(controller.start_lab())
        for _ in range(200):
            if gateway.calls["start_assessment"]:
                break
            await asyncio.sleep(0.01)

        await controller.retake()
        gateway.start_gate.set()

        with pytest.raises(InvalidTransitionError):
            await start
        await asyncio.sleep(0.05)

        assert controller.state == SessionState.IDLE
        assert controller.session is None
        assert controller.starting_progress == 0
        assert controller.all_permissions_granted is False

    @pytest.mark.asyncio
    async def test_retake_does_not_wait_for_pending_upload(self, make_controller, start_running, gateway):
        from labproctor.proctor import SessionState

        gateway.upload_gate = asyncio.Event()
        controller = await start_running(make_controller())
        await asyncio.sleep(0.1)
        io_key = f"{controller.session.key.stem}:io"

        await asyncio.wait_for(controller.retake(), timeout=1)

        assert controller.state == SessionState.IDLE
        assert controller.registry.active(io_key) >= 1

        gateway.upload_gate.set()
        for _ in range(200):
            if not controller.registry.active(io_key):
                break
            await asyncio.sleep(0.01)
        assert controller.registry.active(io_key) == 0


class TestScreenReshare:
    """Tests for sharing the screen again during a run"""

    @pytest.mark.asyncio
    async def test_reshare_keeps_screen_recording(self, make_controller, start_running):
        from labproctor.proctor.models import StreamType

        def screen_segments():
            return [s for s in controller.gateway.calls["upload_segment"] if s.stream_type == StreamType.SCREEN]

        controller = await start_running(make_controller())
        stem = controller.session.key.stem
        try:
            await asyncio.sleep(0.2)
            controller.media.screen.video_track.end()
            assert controller.permissions.screen is False

            controller.grant_screen()
            await asyncio.sleep(0.1)
            before = len(screen_segments())
            await asyncio.sleep(0.3)

            assert controller.permissions.screen is True
            assert len(screen_segments()) > before
            assert {s.key.stem for s in screen_segments()} == {stem}
            recorders = [r for r in controller._recorders if r.stream_type == StreamType.SCREEN]
            assert len(recorders) == 1
            assert recorders[0].handle is controller.media.screen
            assert recorders[0].active is True
        finally:
            await controller.on_unload()
