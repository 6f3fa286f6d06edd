"""
API endpoint tests.
"""


def start_chat(client, message="hello", **extra):
    response = client.post("/api/v1/chat", json={"agent_id": "agent-1", "message": message, **extra})
    assert response.status_code == 200
    return response.json()


class TestHealthEndpoints:
    """Test health and info endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "operational"
        assert data["docs"] == "/docs"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"]["dispatcher"] is True
        assert data["services"]["persistent_storage"] is False

    def test_metrics(self, client):
        start_chat(client)
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "leadqual_http_requests_total" in response.text
        assert "leadqual_intent_classification_total" in response.text
        assert 'leadqual_model_calls_total{operation="chat"' in response.text


class TestChatEndpoint:
    """Test the chat endpoint."""

    def test_chat_turn(self, client):
        data = start_chat(client, "Do you have condos near the business district?")
        assert data["reply"] == "Happy to help!"
        assert data["mode"] == "ai"
        assert data["intent"] == "general"
        assert data["conversation_id"]

    def test_continues_conversation(self, client):
        first = start_chat(client)
        second = start_chat(client, "and parking?", conversation_id=first["conversation_id"])
        assert second["conversation_id"] == first["conversation_id"]

    def test_chat_empty_message(self, client):
        response = client.post("/api/v1/chat", json={"agent_id": "agent-1", "message": ""})
        assert response.status_code == 422

    def test_chat_missing_agent(self, client):
        response = client.post("/api/v1/chat", json={"message": "hello"})
        assert response.status_code == 422

    def test_chat_message_too_long(self, client):
        response = client.post("/api/v1/chat", json={"agent_id": "agent-1", "message": "x" * 2001})
        assert response.status_code == 422

    def test_chat_conversation_id_too_long(self, client):
        response = client.post(
            "/api/v1/chat",
            json={"agent_id": "agent-1", "message": "hello", "conversation_id": "c" * 37},
        )
        assert response.status_code == 422

    def test_chat_external_conversation_id(self, client):
        data = start_chat(client, conversation_id="m" * 36)
        assert data["conversation_id"] == "m" * 36

    def test_bant_turn_scores(self, client, responder, extraction):
        client.provider.responder = responder(
            intent="BANT",
            extraction=extraction(budget=("answered", "30M"), authority=("answered", "sole_owner")),
        )
        data = start_chat(client, "My budget is 30M and I decide alone")
        assert data["intent"] == "bant"
        assert data["lead_score"] == 55
        assert data["lead_tier"] == "warm"
        assert data["next_expected_slot"] == "need"


class TestQualificationEndpoint:
    def test_unknown_conversation(self, client):
        response = client.get("/api/v1/chat/missing/qualification")
        assert response.status_code == 404

    def test_not_started(self, client):
        data = start_chat(client, "Do you have condos near the business district?")
        response = client.get(f"/api/v1/chat/{data['conversation_id']}/qualification")
        assert response.status_code == 404

    def test_after_greeting(self, client, responder):
        client.provider.responder = responder(intent="GREETING")
        data = start_chat(client, "hi")

        response = client.get(f"/api/v1/chat/{data['conversation_id']}/qualification")

        assert response.status_code == 200
        body = response.json()
        assert body["next_expected_slot"] == "budget"
        assert body["version"] == 1
        assert body["lead"] is None


class TestConversationMode:
    def test_takeover_silences_assistant(self, client):
        conversation_id = start_chat(client)["conversation_id"]

        response = client.put(f"/api/v1/conversations/{conversation_id}/mode", json={"mode": "human"})
        assert response.status_code == 200
        assert response.json()["mode"] == "human"

        data = start_chat(client, "hello?", conversation_id=conversation_id)
        assert data["reply"] is None
        assert data["mode"] == "human"

    def test_unknown_conversation(self, client):
        response = client.put("/api/v1/conversations/missing/mode", json={"mode": "ai"})
        assert response.status_code == 404

    def test_invalid_mode(self, client):
        conversation_id = start_chat(client)["conversation_id"]
        response = client.put(f"/api/v1/conversations/{conversation_id}/mode", json={"mode": "robot"})
        assert response.status_code == 422

    def test_archive(self, client):
        conversation_id = start_chat(client)["conversation_id"]
        assert client.post(f"/api/v1/conversations/{conversation_id}/archive").status_code == 200
        assert client.post("/api/v1/conversations/missing/archive").status_code == 404


class TestScoringConfigEndpoints:
    def test_default_config(self, client):
        response = client.get("/api/v1/agents/agent-9/scoring-config")
        assert response.status_code == 200
        data = response.json()
        assert data["is_default"] is True
        assert data["budget_weight"] == 30

    def test_rejects_bad_weight_sum(self, client):
        response = client.put("/api/v1/agents/agent-9/scoring-config", json={"budget_weight": 50})
        assert response.status_code == 400
        assert "sum to 100" in response.json()["detail"]

    def test_rejects_out_of_order_thresholds(self, client):
        response = client.put(
            "/api/v1/agents/agent-9/scoring-config",
            json={"warm_threshold": 80, "hot_threshold": 70, "priority_threshold": 90},
        )
        assert response.status_code == 400

    def test_rejects_out_of_range_field(self, client):
        response = client.put("/api/v1/agents/agent-9/scoring-config", json={"budget_weight": 150})
        assert response.status_code == 422

    def test_save_read_delete(self, client):
        payload = {"budget_weight": 40, "timeline_weight": 10, "warm_threshold": 40}
        response = client.put("/api/v1/agents/agent-9/scoring-config", json=payload)
        assert response.status_code == 200
        assert response.json()["is_default"] is False

        data = client.get("/api/v1/agents/agent-9/scoring-config").json()
        assert data["is_default"] is False
        assert data["budget_weight"] == 40
        assert data["warm_threshold"] == 40

        assert client.delete("/api/v1/agents/agent-9/scoring-config").status_code == 200
        assert client.delete("/api/v1/agents/agent-9/scoring-config").status_code == 404
        assert client.get("/api/v1/agents/agent-9/scoring-config").json()["is_default"] is True


class TestTokenUsageAnalytics:
    def test_turn_is_accounted(self, client):
        start_chat(client, "Do you have condos near the business district?")

        data = client.get("/api/v1/analytics/token-usage").json()

        assert data["request_count"] == 2
        assert set(data["by_operation"]) == {"intent_classification", "chat"}
        assert data["total_tokens"] == 2 * (40 + 12)
        assert data["total_cost"] > 0

    def test_filters(self, client):
        start_chat(client, "Do you have condos near the business district?")

        by_op = client.get("/api/v1/analytics/token-usage", params={"operation": "chat"}).json()
        other_agent = client.get("/api/v1/analytics/token-usage", params={"agent_id": "agent-2"}).json()

        assert by_op["request_count"] == 1
        assert by_op["filters"]["operation"] == "chat"
        assert other_agent["request_count"] == 0

    def test_daily(self, client):
        start_chat(client)
        data = client.get("/api/v1/analytics/token-usage/daily").json()
        assert len(data["days"]) == 1
        assert data["days"][0]["request_count"] == 2

    def test_bad_range(self, client):
        response = client.get(
            "/api/v1/analytics/token-usage",
            params={"start": "2026-02-01T00:00:00", "end": "2026-01-01T00:00:00"},
        )
        assert response.status_code == 400

    def test_unknown_operation(self, client):
        response = client.get("/api/v1/analytics/token-usage", params={"operation": "teleport"})
        assert response.status_code == 422


class TestBantQuestionEndpoints:
    CUSTOM = {"questions": [
        {"category": "budget", "question_text": "What is your investment budget?", "question_order": 1},
        {"category": "budget", "question_text": "Do you require financing?", "question_order": 2},
        {"category": "authority", "question_text": "Who will make the final decision?", "question_order": 1},
    ]}

    def test_defaults(self, client):
        data = client.get("/api/v1/bant-questions/defaults").json()
        assert [q["category"] for q in data["questions"]] == ["budget", "authority", "need", "timeline"]

    def test_agent_without_questions_gets_defaults(self, client):
        data = client.get("/api/v1/agents/agent-9/bant-questions").json()
        assert data["is_default"] is True
        assert len(data["questions"]) == 4

    def test_save_read_delete(self, client):
        response = client.put("/api/v1/agents/agent-9/bant-questions", json=self.CUSTOM)
        assert response.status_code == 200

        data = client.get("/api/v1/agents/agent-9/bant-questions").json()
        assert data["is_default"] is False
        assert len(data["questions"]) == 3

        assert client.delete("/api/v1/agents/agent-9/bant-questions").status_code == 200
        assert client.delete("/api/v1/agents/agent-9/bant-questions").status_code == 404

    def test_rejects_repeated_order(self, client):
        payload = {"questions": [
            {"category": "need", "question_text": "A?", "question_order": 1},
            {"category": "need", "question_text": "B?", "question_order": 1},
        ]}
        response = client.put("/api/v1/agents/agent-9/bant-questions", json=payload)
        assert response.status_code == 400

    def test_rejects_unknown_category(self, client):
        payload = {"questions": [{"category": "mood", "question_text": "How are you?"}]}
        response = client.put("/api/v1/agents/agent-9/bant-questions", json=payload)
        assert response.status_code == 422

    def test_chat_asks_agent_question(self, client, responder):
        client.put("/api/v1/agents/agent-1/bant-questions", json=self.CUSTOM)
        client.provider.responder = responder(intent="GREETING")

        start_chat(client, "hi")

        reply_prompt = client.provider.calls[-1]["messages"][0]["content"]
        assert "What is your investment budget?" in reply_prompt
