"""
Tests for job submission routes (provider clients patched, storage faked).

Run locally:
    python -m pytest genrelay/tests/test_submit.py -v
"""

from __future__ import annotations

from unittest.mock import patch

from genrelay.services.kie_service import KieConfigError, KieError
from genrelay.services.polling_service import PollOutcome
from genrelay.services.replicate_service import ReplicateError

API = "/api/functions"
IMAGE = "https://tempfile.aiquickdraw.com/f/mj/cat.png"
KIE_ACCEPTED = {"code": 200, "msg": "success", "data": {"taskId": "mj-task-0001"}}


class TestEndToEnd:
    """Submit, poll while pending, poll after success; the run's row carries the URL."""

    def test_submit_poll_complete(self, client, generations):
        with patch("genrelay.routes.submit.kie_post", return_value=KIE_ACCEPTED) as kie_post:
            resp = client.post(f"{API}/run-midjourney", json={"prompt": "cat", "run_id": "abc"})

        assert resp.status_code == 200
        assert resp.get_json() == {"submitted": True, "taskId": "mj-task-0001", "run_id": "abc"}
        path, payload = kie_post.call_args[0]
        assert path == "/api/v1/mj/generate"
        assert payload["taskType"] == "mj_txt2img"
        assert payload["aspectRatio"] == "2:3"
        assert payload["callBackUrl"].startswith("https://relay.test/api/functions/kie-callback?")
        assert payload["notify_url"] == payload["callBackUrl"]

        pending = {"code": 200, "data": {"taskId": "mj-task-0001", "status": "processing"}}
        with patch("genrelay.services.polling_service.kie_get", return_value=pending):
            resp = client.get(f"{API}/nb-check?taskId=mj-task-0001&run_id=abc")
        assert resp.get_json() == {"ok": True, "status": "pending"}

        done = {"code": 200, "data": {"taskId": "mj-task-0001", "status": "succeeded", "resultUrls": [IMAGE]}}
        with patch("genrelay.services.polling_service.kie_get", return_value=done):
            resp = client.get(f"{API}/nb-check?taskId=mj-task-0001&run_id=abc")
        body = resp.get_json()
        assert body["ok"] is True
        assert body["status"] == "success"
        assert body["image_url"] == IMAGE

        rows = [r for r in generations() if (r.get("meta") or {}).get("run_id") == "abc"]
        assert len(rows) == 1
        assert rows[0]["result_url"] == IMAGE
        assert rows[0]["meta"]["task_id"] == "mj-task-0001"

    def test_legacy_prefix_routes_to_same_handler(self, client):
        with patch("genrelay.routes.submit.kie_post", return_value=KIE_ACCEPTED):
            resp = client.post("/.netlify/functions/run-midjourney", json={"prompt": "cat", "run_id": "abc"})
        assert resp.get_json()["submitted"] is True


class TestNanoBanana:
    def test_missing_prompt(self, client):
        resp = client.post(f"{API}/run-nano-banana", json={"imageUrls": ["https://x.test/a.png"]})
        assert resp.status_code == 200
        assert resp.get_json() == {"submitted": False, "error": "missing_prompt"}

    def test_missing_image(self, client):
        resp = client.post(f"{API}/kie-create", json={"prompt": "cat"})
        assert resp.get_json()["error"] == "missing_image"

    def test_payload_shape(self, client):
        with patch("genrelay.routes.submit.kie_post", return_value=KIE_ACCEPTED) as kie_post:
            resp = client.post(
                f"{API}/run-nano-banana",
                json={
                    "prompt": "make it blue",
                    "imageUrls": ["https://kieai.redpandaai.co/download/u/a.png"],
                    "image_size": "portrait_9_16",
                    "run_id": "nb-1",
                },
                headers={"X-USER-ID": "u1"},
            )
        assert resp.get_json()["submitted"] is True
        path, payload = kie_post.call_args[0]
        assert path == "/api/v1/jobs/createTask"
        assert payload["model"] == "google/nano-banana-edit"
        assert payload["input"]["image_urls"] == ["https://kieai.redpandaai.co/files/u/a.png"]
        assert payload["input"]["image_size"] == "9:16"
        assert payload["input"]["output_format"] == "png"
        for key in ("callBackUrl", "callbackUrl", "webhook_url", "webhookUrl", "notify_url"):
            assert "uid=u1" in payload[key]

    def test_base64_files_uploaded_first(self, client):
        uploaded = {"code": 200, "data": {"downloadUrl": "https://kieai.redpandaai.co/download/up.png"}}
        with patch("genrelay.routes.submit.upload_base64", return_value=uploaded) as upload, \
                patch("genrelay.routes.submit.kie_post", return_value=KIE_ACCEPTED) as kie_post:
            resp = client.post(
                f"{API}/run-nano-banana",
                json={"prompt": "cat", "files": [{"data": "aGVsbG8=", "contentType": "image/png", "name": "a.png"}]},
            )
        assert resp.get_json()["submitted"] is True
        assert upload.call_args[0][0] == b"hello"
        assert kie_post.call_args[0][1]["input"]["image_urls"] == ["https://kieai.redpandaai.co/files/up.png"]

    def test_too_many_files(self, client):
        files = [{"data": "aGVsbG8="}] * 5
        resp = client.post(f"{API}/run-nano-banana", json={"prompt": "cat", "files": files})
        assert resp.get_json()["error"] == "too_many_files"

    def test_provider_rejection(self, client, generations):
        with patch("genrelay.routes.submit.kie_post", side_effect=KieError(422, "bad image")):
            resp = client.post(
                f"{API}/run-nano-banana",
                json={"prompt": "cat", "imageUrls": ["https://x.test/a.png"], "run_id": "r-err"},
                headers={"X-USER-ID": "u1"},
            )
        assert resp.status_code == 200
        assert resp.get_json()["error"] == "kie_422"
        assert generations()[0]["meta"]["status"] == "failed"

    def test_not_configured(self, client):
        with patch("genrelay.routes.submit.kie_post", side_effect=KieConfigError()):
            resp = client.post(f"{API}/run-nano-banana", json={"prompt": "cat", "imageUrls": ["https://x.test/a.png"]})
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "kie_not_configured"


class TestNanoBananaWait:
    def _post(self, client, outcome):
        with patch("genrelay.routes.submit.kie_post", return_value=KIE_ACCEPTED), \
                patch("genrelay.routes.submit.wait_for_kie_task", return_value=outcome):
            return client.post(
                f"{API}/run-nano-banana/wait",
                json={"prompt": "cat", "imageUrls": ["https://x.test/a.png"], "run_id": "w-1"},
                headers={"X-USER-ID": "u1"},
            )

    def test_success(self, client, generations):
        resp = self._post(client, PollOutcome(status="success", urls=[IMAGE]))
        assert resp.status_code == 200
        assert resp.get_json()["image_url"] == IMAGE
        assert generations()[0]["result_url"] == IMAGE

    def test_failure(self, client):
        assert self._post(client, PollOutcome(status="failed")).status_code == 500

    def test_timeout(self, client):
        resp = self._post(client, PollOutcome(status="pending", timed_out=True))
        assert resp.status_code == 504
        assert resp.get_json()["status"] == "timeout"


class TestVideoSubmitters:
    def test_runway_requires_user(self, client):
        resp = client.post(f"{API}/run-runway", json={"prompt": "waves"})
        assert resp.get_json() == {"submitted": False, "error": "missing_user_id"}

    def test_runway_requires_prompt(self, client):
        resp = client.post(f"{API}/run-runway", json={"uid": "u1"})
        assert resp.get_json()["error"] == "empty_prompt"

    def test_runway_payload(self, client):
        with patch("genrelay.routes.submit.kie_post", return_value=KIE_ACCEPTED) as kie_post:
            resp = client.post(f"{API}/run-runway", json={"uid": "u1", "prompt": "waves", "aspectRatio": "16x9"})
        assert resp.get_json()["submitted"] is True
        payload = kie_post.call_args[0][1]
        assert payload["aspectRatio"] == "16:9"
        assert payload["duration"] == 5
        assert payload["quality"] == "1080p"
        assert "/video-kie-callback?" in payload["callBackUrl"]

    def test_veo3_defaults(self, client):
        with patch("genrelay.routes.submit.kie_post", return_value=KIE_ACCEPTED) as kie_post:
            resp = client.post(f"{API}/run-veo3", json={"uid": "u1", "prompt": "city", "model": "nope"})
        assert resp.get_json()["model"] == "veo3_fast"
        payload = kie_post.call_args[0][1]
        assert payload["aspectRatio"] == "16:9"
        assert payload["duration"] == 8

    def test_aleph_requires_video(self, client):
        resp = client.post(f"{API}/run-aleph", json={"uid": "u1", "prompt": "x"})
        assert resp.get_json()["error"] == "need_prompt_and_video"

    def test_mj_video_payload(self, client):
        with patch("genrelay.routes.submit.kie_post", return_value=KIE_ACCEPTED) as kie_post:
            client.post(f"{API}/run-mj-video", json={"uid": "u1", "prompt": "spin", "imageUrl": "https://x.test/a.png"})
        payload = kie_post.call_args[0][1]
        assert payload["taskType"] == "mj_video"
        assert payload["videoBatchSize"] == 1

    def test_higgsfield_validation_and_submit(self, client, generations):
        resp = client.post(f"{API}/run-higgsfield", json={"uid": "u1", "imageUrl": "https://x.test/a.png"})
        assert resp.get_json()["error"] == "missing_motion_id"

        with patch("genrelay.routes.submit.create_dop_job", return_value={"id": "js-77"}):
            resp = client.post(
                f"{API}/run-higgsfield",
                json={"uid": "u1", "motion_id": "m-1", "imageUrl": "https://x.test/a.png", "run_id": "hf-1"},
            )
        assert resp.get_json()["job_set_id"] == "js-77"
        assert generations()[0]["meta"]["job_set_id"] == "js-77"


class TestReplicateSubmitters:
    def test_imagen_debits_and_seeds(self, client, storage, generations):
        storage.balances["u1"] = 10
        with patch("genrelay.routes.submit.create_prediction", return_value={"id": "pred-1"}) as create:
            resp = client.post(
                f"{API}/run-imagen",
                json={"prompt": "a fox", "model": "ultra", "run_id": "im-1"},
                headers={"X-USER-ID": "u1"},
            )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["submitted"] is True
        assert body["id"] == "pred-1"
        assert body["credits"] == 9.0
        assert create.call_args[0][0] == "google/imagen-4-ultra"
        assert create.call_args.kwargs["webhook"].startswith("https://relay.test/api/functions/imagen-check?uid=u1")
        assert generations()[0]["meta"]["prediction_id"] == "pred-1"

    def test_imagen_anonymous_not_debited(self, client, storage):
        with patch("genrelay.routes.submit.create_prediction", return_value={"id": "pred-2"}):
            client.post(f"{API}/run-imagen", json={"prompt": "a fox"})
        assert not [c for c in storage.calls if c[0] == "rpc"]

    def test_gpt_image_upstream_error(self, client):
        with patch("genrelay.routes.submit.create_prediction", side_effect=ReplicateError(422, "invalid")):
            resp = client.post(f"{API}/run-gpt-image-1", json={"prompt": "x"})
        assert resp.status_code == 502

    def test_kling_insufficient_credits_cancels(self, client, storage, generations):
        storage.balances["u1"] = 3
        with patch("genrelay.routes.submit.create_prediction", return_value={"id": "pred-k"}) as create, \
                patch("genrelay.routes.submit.cancel_prediction", return_value=True) as cancel:
            resp = client.post(f"{API}/run-kling", json={"uid": "u1", "prompt": "surf", "run_id": "k-1"})

        assert resp.status_code == 402
        assert resp.get_json()["error"] == "not_enough_credits"
        cancel.assert_called_once_with("pred-k")
        assert "row_id=1" in create.call_args.kwargs["webhook"]
        assert generations()[0]["meta"]["status"] == "failed"
        assert storage.balances["u1"] == 3

    def test_kling_ten_seconds(self, client, storage, generations):
        storage.balances["u1"] = 20
        with patch("genrelay.routes.submit.create_prediction", return_value={"id": "pred-k"}) as create:
            resp = client.post(f"{API}/run-kling", json={"uid": "u1", "prompt": "surf", "duration": "10"})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["debited"] == 13.0
        assert body["credits"] == 7.0
        assert create.call_args[0][1]["duration"] == 10
        assert generations()[0]["meta"]["prediction_id"] == "pred-k"

    def test_kling_requires_user(self, client):
        resp = client.post(f"{API}/run-kling", json={"prompt": "surf"})
        assert resp.get_json()["error"] == "missing_uid"
