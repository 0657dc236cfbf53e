from responses_chat.conversation import (
    ApprovalRequestItem,
    ConversationStore,
    MessageItem,
    ToolCallItem,
    ToolCatalogItem,
    ToolStatus,
    ToolType,
)
from responses_chat.reconciler import TurnReconciler


def ev(kind: str, **data) -> dict:
    return {"event": kind, "data": data}


def _reconciler():
    store = ConversationStore()
    return store, TurnReconciler(store)


def _feed(reconciler: TurnReconciler, events) -> None:
    for event in events:
        reconciler.apply(event)


FUNCTION_CALL = [
    ev(
        "response.output_item.added",
        item={"type": "function_call", "id": "fc_1", "name": "get_weather", "arguments": "", "status": "in_progress"},
    ),
    ev("response.function_call_arguments.delta", item_id="fc_1", delta='{"location": "Pa'),
    ev("response.function_call_arguments.delta", item_id="fc_1", delta='ris"}'),
    ev("response.function_call_arguments.done", item_id="fc_1", arguments='{"location": "Paris"}'),
    ev(
        "response.output_item.done",
        item={
            "type": "function_call",
            "id": "fc_1",
            "call_id": "call_1",
            "name": "get_weather",
            "arguments": '{"location": "Paris"}',
            "status": "completed",
        },
    ),
]


def test_assistant_text_deltas_coalesce_into_one_message() -> None:
    store, reconciler = _reconciler()
    store.set_loading(True)
    _feed(
        reconciler,
        [
            ev("response.output_text.delta", item_id="msg_1", delta="Hel"),
            ev("response.output_text.delta", item_id="msg_1", delta="lo"),
        ],
    )
    assert len(store.chat_messages) == 1
    message = store.chat_messages[0]
    assert message.role == "assistant"
    assert message.id == "msg_1"
    assert message.text == "Hello"
    assert store.is_assistant_loading is False


def test_text_continues_message_announced_by_item_added() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_item.added", item={"type": "message", "id": "msg_1", "role": "assistant", "content": []}),
            ev("response.output_text.delta", item_id="msg_1", delta="Hi"),
            ev("response.output_text.done", item_id="msg_1", text="Hi there"),
            ev(
                "response.output_item.done",
                item={"type": "message", "id": "msg_1", "role": "assistant", "content": [{"type": "output_text", "text": "Hi there"}]},
            ),
        ],
    )
    assert len(store.chat_messages) == 1
    assert store.chat_messages[0].text == "Hi there"
    # the empty added item stays out of the wire-context; the done item goes in once
    assert store.conversation_items == [
        {"type": "message", "id": "msg_1", "role": "assistant", "content": [{"type": "output_text", "text": "Hi there"}]}
    ]


def test_annotations_are_normalized() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_text.delta", item_id="msg_1", delta="See file"),
            ev(
                "response.output_text.annotation.added",
                item_id="msg_1",
                annotation={"type": "file_citation", "fileId": "file_1", "index": 3},
            ),
        ],
    )
    annotations = store.chat_messages[0].first_part().annotations
    assert annotations == [{"type": "file_citation", "file_id": "file_1", "index": 3}]


def test_function_call_completes_and_is_pending() -> None:
    store, reconciler = _reconciler()
    _feed(reconciler, FUNCTION_CALL)

    call = store.chat_messages[0]
    assert isinstance(call, ToolCallItem)
    assert call.tool_type == ToolType.FUNCTION
    assert call.status == ToolStatus.COMPLETED
    assert call.parsed_arguments == {"location": "Paris"}
    assert call.call_id == "call_1"
    assert reconciler.pending_calls == [call]
    assert store.conversation_items[-1]["call_id"] == "call_1"


def test_partial_arguments_are_visible_while_streaming() -> None:
    store, reconciler = _reconciler()
    _feed(reconciler, FUNCTION_CALL[:2])
    call = store.chat_messages[0]
    assert call.status == ToolStatus.IN_PROGRESS
    assert call.arguments == '{"location": "Pa'
    assert call.parsed_arguments == {"location": "Pa"}


def test_call_added_without_id_adopts_the_id_of_its_deltas() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_item.added", item={"type": "function_call", "name": "search", "arguments": ""}),
            ev("response.function_call_arguments.delta", item_id="fc_1", delta='{"q":'),
            ev("response.function_call_arguments.delta", item_id="fc_1", delta=' "cat"}'),
        ],
    )
    call = store.chat_messages[0]
    assert call.id == "fc_1"
    assert call.arguments == '{"q": "cat"}'
    assert call.parsed_arguments == {"q": "cat"}
    assert reconciler.violations == []

    _feed(
        reconciler,
        [
            ev("response.function_call_arguments.done", item_id="fc_1", arguments='{"q": "cat"}'),
            ev(
                "response.output_item.done",
                item={"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "search", "arguments": '{"q": "cat"}'},
            ),
        ],
    )
    assert len(store.chat_messages) == 1
    assert reconciler.pending_calls == [call]
    assert call.call_id == "call_1"
    assert reconciler.violations == []


def test_adoption_respects_the_tool_kind() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_item.added", item={"type": "web_search_call", "status": "in_progress"}),
            ev("response.function_call_arguments.delta", item_id="fc_1", delta="{}"),
            ev("response.output_item.done", item={"type": "message", "id": "msg_1", "role": "assistant", "content": []}),
        ],
    )
    assert store.chat_messages[0].id is None
    assert [v.item_id for v in reconciler.violations] == ["fc_1"]


def test_repeated_arguments_done_is_a_no_op() -> None:
    store, reconciler = _reconciler()
    _feed(reconciler, FUNCTION_CALL[:4])
    calls = []
    store.subscribe(lambda s: calls.append(1))
    reconciler.apply(FUNCTION_CALL[3])
    call = store.chat_messages[0]
    assert call.status == ToolStatus.COMPLETED
    assert call.parsed_arguments == {"location": "Paris"}
    assert calls == []


def test_arguments_delta_after_completion_is_ignored() -> None:
    store, reconciler = _reconciler()
    _feed(reconciler, FUNCTION_CALL[:4])
    reconciler.apply(ev("response.function_call_arguments.delta", item_id="fc_1", delta="garbage"))
    assert store.chat_messages[0].arguments == '{"location": "Paris"}'


def test_invalid_final_arguments_fail_the_call() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            FUNCTION_CALL[0],
            ev("response.function_call_arguments.done", item_id="fc_1", arguments='{"location": '),
            ev(
                "response.output_item.done",
                item={"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "get_weather", "arguments": '{"location": '},
            ),
        ],
    )
    assert store.chat_messages[0].status == ToolStatus.FAILED
    assert reconciler.pending_calls == []


def test_reasoning_summary_finalizes_into_one_context_entry() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.reasoning_summary_text.delta", item_id="rs_1", delta="Think"),
            ev("response.reasoning_summary_text.delta", item_id="rs_1", delta="ing"),
            ev("response.reasoning_summary_text.done", item_id="rs_1", text="Thinking"),
            # replayed completion
            ev("response.reasoning_summary_text.done", item_id="rs_1", text="Thinking"),
        ],
    )
    summaries = [m for m in store.chat_messages if isinstance(m, MessageItem) and m.is_summary]
    assert len(summaries) == 1
    assert summaries[0].text == "Thinking"
    assert store.conversation_items == [
        {"role": "assistant", "content": [{"type": "output_text", "text": "Thinking"}]}
    ]


def test_second_summary_part_gets_its_own_message() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.reasoning_summary_text.delta", item_id="rs_1", delta="First"),
            ev("response.reasoning_summary_text.done", item_id="rs_1"),
            ev("response.reasoning_summary_text.delta", item_id="rs_1", delta="Second"),
            ev("response.reasoning_summary_text.done", item_id="rs_1"),
        ],
    )
    assert [m.text for m in store.chat_messages] == ["First", "Second"]
    assert len(store.conversation_items) == 2


def test_web_search_lifecycle_records_queries() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_item.added", item={"type": "web_search_call", "id": "ws_1", "status": "in_progress"}),
            ev("response.web_search_call.in_progress", item_id="ws_1"),
            ev("response.web_search_call.searching", item_id="ws_1", query="paris weather"),
            ev("response.web_search_query.updated", item_id="ws_1", query="paris weather today"),
            ev("response.web_search_call.completed", item_id="ws_1"),
            ev(
                "response.output_item.done",
                item={"type": "web_search_call", "id": "ws_1", "status": "completed", "action": {"query": "paris weather today"}},
            ),
        ],
    )
    call = store.chat_messages[0]
    assert call.status == ToolStatus.COMPLETED
    assert call.search_queries == ["paris weather", "paris weather today"]
    assert call.current_query is None


def test_status_never_moves_backwards() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_item.added", item={"type": "file_search_call", "id": "fs_1"}),
            ev("response.file_search_call.completed", item_id="fs_1"),
            ev("response.file_search_call.searching", item_id="fs_1"),
            ev("response.file_search_call.in_progress", item_id="fs_1"),
        ],
    )
    assert store.chat_messages[0].status == ToolStatus.COMPLETED


def test_code_interpreter_streams_code_and_collects_files() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_item.added", item={"type": "code_interpreter_call", "id": "ci_1", "code": ""}),
            ev("response.code_interpreter_call_code.delta", item_id="ci_1", delta="print("),
            ev("response.code_interpreter_call_code.delta", item_id="ci_1", delta="1)"),
            ev("response.code_interpreter_call_code.done", item_id="ci_1", code="print(1)"),
            ev("response.code_interpreter_call.completed", item_id="ci_1"),
            ev("response.output_text.delta", item_id="msg_1", delta="Here is your chart"),
            ev(
                "response.output_text.annotation.added",
                item_id="msg_1",
                annotation={"type": "container_file_citation", "fileId": "cfile_1", "containerId": "cntr_1", "filename": "chart.png"},
            ),
        ],
    )
    call = store.chat_messages[0]
    assert call.code == "print(1)"
    assert call.status == ToolStatus.COMPLETED
    assert call.files == [
        {"file_id": "cfile_1", "mime_type": "", "container_id": "cntr_1", "filename": "chart.png"}
    ]


def test_search_and_code_calls_added_without_id_adopt_it() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_item.added", item={"type": "web_search_call", "status": "in_progress"}),
            ev("response.web_search_call.searching", item_id="ws_1", query="cats"),
            ev("response.web_search_call.completed", item_id="ws_1"),
            ev("response.output_item.added", item={"type": "code_interpreter_call", "code": ""}),
            ev("response.code_interpreter_call_code.delta", item_id="ci_1", delta="print(1)"),
            ev("response.code_interpreter_call.completed", item_id="ci_1"),
            ev("response.output_item.done", item={"type": "code_interpreter_call", "id": "ci_1", "status": "completed"}),
        ],
    )
    search, code = store.chat_messages
    assert (search.id, search.status, search.search_queries) == ("ws_1", ToolStatus.COMPLETED, ["cats"])
    assert (code.id, code.status, code.code) == ("ci_1", ToolStatus.COMPLETED, "print(1)")
    assert reconciler.violations == []


def test_mcp_call_output_and_failure() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.output_item.added", item={"type": "mcp_call", "id": "mcp_1", "name": "search"}),
            ev("response.mcp_call_arguments.delta", item_id="mcp_1", delta='{"q": "x"}'),
            ev("response.mcp_call_arguments.done", item_id="mcp_1", arguments='{"q": "x"}'),
            ev("response.output_item.added", item={"type": "mcp_call", "id": "mcp_2", "name": "fetch"}),
            ev("response.output_item.done", item={"type": "mcp_call", "id": "mcp_1", "output": "result"}),
            ev("response.output_item.done", item={"type": "mcp_call", "id": "mcp_2", "error": "boom"}),
        ],
    )
    first, second = store.chat_messages
    assert first.output == "result"
    assert first.status == ToolStatus.COMPLETED
    assert second.status == ToolStatus.FAILED
    # gateway calls run remotely
    assert reconciler.pending_calls == []


def test_response_completed_records_cursor_and_approvals() -> None:
    store, reconciler = _reconciler()
    store.add_user_message("hi")
    completed = ev(
        "response.completed",
        response={
            "id": "resp_1",
            "output": [
                {"type": "mcp_list_tools", "id": "mcpl_1", "server_label": "deepwiki", "tools": [{"name": "ask"}]},
                {"type": "mcp_approval_request", "id": "mcpr_1", "server_label": "deepwiki", "name": "ask", "arguments": "{}"},
            ],
        },
    )
    _feed(reconciler, [completed, completed])

    assert store.last_response_id == "resp_1"
    assert store.response_cursor == 1
    catalogs = [i for i in store.chat_messages if isinstance(i, ToolCatalogItem)]
    approvals = [i for i in store.chat_messages if isinstance(i, ApprovalRequestItem)]
    assert len(catalogs) == 1
    assert catalogs[0].tools == [{"name": "ask"}]
    assert len(approvals) == 1
    assert store.pending_approvals == approvals


def test_unknown_item_reference_is_recorded_not_raised() -> None:
    store, reconciler = _reconciler()
    _feed(
        reconciler,
        [
            ev("response.function_call_arguments.delta", item_id="fc_missing", delta="{}"),
            ev("response.output_item.done", item={"type": "function_call", "id": "fc_missing"}),
        ],
    )
    assert [v.item_id for v in reconciler.violations] == ["fc_missing", "fc_missing"]
    assert not any(isinstance(i, ToolCallItem) for i in store.chat_messages)


def test_unknown_event_kind_is_ignored() -> None:
    store, reconciler = _reconciler()
    reconciler.apply(ev("response.audio.delta", delta="AAAA"))
    reconciler.apply({"type": "response.in_progress"})
    assert store.chat_messages == []
    assert reconciler.violations == []


def test_stream_error_sets_failure() -> None:
    store, reconciler = _reconciler()
    reconciler.apply(ev("error", message="rate limited"))
    assert reconciler.failure == "rate limited"

    _, reconciler = _reconciler()
    reconciler.apply(ev("response.failed", response={"error": {"message": "server error"}}))
    assert reconciler.failure == "server error"


def test_bare_events_are_accepted() -> None:
    store, reconciler = _reconciler()
    reconciler.apply({"type": "response.output_text.delta", "item_id": "msg_1", "delta": "ok"})
    assert store.chat_messages[0].text == "ok"
