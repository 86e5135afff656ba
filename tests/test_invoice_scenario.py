"""
End-to-end turns through the ChatService with the sample invoice and
customer workflows and no language model configured.
"""
from agent_orchestrator.state.models import SessionContext


def assert_pointers_consistent(store, session_id):
    context = store.load(session_id)
    assert (context.current_workflow is None) == (context.current_step is None)
    return context


async def test_invoice_with_new_customer_runs_customer_subworkflow(build_service, session_store, entity_store):
    service = build_service()
    session_id = service.create_session().session_id

    reply = await service.process_message(session_id, "Create invoice for John Smith with 2 laptops")
    assert reply.status == "needs_input"
    assert "couldn't find customer 'John Smith'" in reply.reply
    assert "create it?" in reply.reply
    assert_pointers_consistent(session_store, session_id)

    reply = await service.process_message(session_id, "yes")
    context = assert_pointers_consistent(session_store, session_id)
    assert context.current_workflow == "create_customer"
    assert len(context.workflow_stack) == 1
    assert context.workflow_stack[0].workflow_id == "create_invoice"
    assert context.workflow_stack[0].step == "resolve_customer"
    assert context.get("name") == "John Smith"
    assert "email" in reply.reply.lower()

    reply = await service.process_message(session_id, "john@example.com")
    assert "optional" in reply.reply
    assert_pointers_consistent(session_store, session_id)

    await service.process_message(session_id, "skip")
    reply = await service.process_message(session_id, "skip")

    customers = entity_store.all("customer")
    assert len(customers) == 1
    assert customers[0]["name"] == "John Smith"
    assert customers[0]["email"] == "john@example.com"

    context = assert_pointers_consistent(session_store, session_id)
    assert context.workflow_stack == []
    assert context.current_workflow == "create_invoice"
    assert context.get("customer_id") == customers[0]["id"]
    assert context.get("customer")["email"] == "john@example.com"
    assert context.current_step == "confirm_action"
    assert reply.metadata["resumed_at"] == "create_invoice.resolve_customer"
    assert "Would you like to proceed?" in reply.reply

    reply = await service.process_message(session_id, "yes")

    assert reply.status == "completed"
    invoices = entity_store.all("invoice")
    assert invoices[0]["customer_id"] == customers[0]["id"]
    assert invoices[0]["items"] == "2 laptops"
    context = assert_pointers_consistent(session_store, session_id)
    assert context.current_workflow is None


async def test_cancel_inside_subworkflow_abandons_parent_too(build_service, session_store):
    service = build_service()
    session_id = service.create_session().session_id

    await service.process_message(session_id, "Create invoice for John Smith with 2 laptops")
    await service.process_message(session_id, "yes")
    assert len(session_store.load(session_id).workflow_stack) == 1

    reply = await service.process_message(session_id, "cancel")

    assert reply.status == "cancelled"
    context = session_store.load(session_id)
    assert context.current_workflow is None
    assert context.current_step is None
    assert context.workflow_stack == []
    assert context.workflow_state == {}


async def test_cancel_with_nothing_running(build_service, policy):
    service = build_service()
    session_id = service.create_session().session_id

    reply = await service.process_message(session_id, "cancel")

    assert reply.reply == policy.nothing_to_cancel()


async def test_collector_trigger_starts_local_collector(build_service, session_store):
    service = build_service()
    session_id = service.create_session().session_id

    reply = await service.process_message(session_id, "please add customer")

    assert reply.metadata["action"] == "start_collector"
    context = session_store.load(session_id)
    assert context.current_workflow == "create_customer"
    assert context.metadata["active_collector"] == "customer_create"

    reply = await service.process_message(session_id, "Jane Doe")
    assert reply.metadata["action"] == "continue_workflow"
    assert session_store.load(session_id).get("name") == "Jane Doe"


async def test_every_turn_is_recorded_in_history(build_service, session_store):
    service = build_service()
    session_id = service.create_session().session_id

    await service.process_message(session_id, "hello there")

    context = SessionContext.from_store(session_store, session_id)
    assert [m.role for m in context.conversation_history] == ["user", "assistant"]
    assert context.conversation_history[1].metadata["action"] == "conversational"
