from typing import Any, Dict, List

from ..domain.models import CollectorConfig, EntitySpec, FieldSpec, WorkflowDefinition
from ..execution.registry import WorkflowRegistry
from ..federation.collectors import CollectorRegistry
from ..repositories.entity import EntityStore
from ..state.models import SessionContext

# ==============================================================================
# CUSTOMER
# ==============================================================================

CUSTOMER_FIELDS = {
    "name": FieldSpec(
        name="name",
        prompt="What is the customer's name?",
        pattern=r"\bcustomer\s+(?:named\s+|called\s+)?([A-Z][\w'.-]*(?:\s+[A-Z][\w'.-]*)*)",
        description="Full name of the customer",
    ),
    "email": FieldSpec(
        name="email",
        type="email",
        prompt="What is the customer's email address?",
        pattern=r"([^@\s]+@[^@\s]+\.[^@\s]+)",
    ),
    "phone": FieldSpec(name="phone", required=False, prompt="What is the customer's phone number?"),
    "address": FieldSpec(name="address", required=False, prompt="What is the customer's address?"),
}


def build_customer_workflow(entity_store: EntityStore) -> WorkflowDefinition:
    async def create_customer(collected: Dict[str, Any], context: SessionContext) -> Dict[str, Any]:
        fields = {name: collected[name] for name in CUSTOMER_FIELDS if name in collected}
        return await entity_store.create("customer", fields)

    return WorkflowDefinition(
        workflow_id="create_customer",
        goal="Create a new customer record with a name and an email address.",
        title="customer creation",
        fields=dict(CUSTOMER_FIELDS),
        final_action=create_customer,
        triggers=["create customer", "new customer"],
        success_message="Customer {name} created.",
    )


# ==============================================================================
# INVOICE
# ==============================================================================

INVOICE_FIELDS = {
    "customer": FieldSpec(
        name="customer",
        prompt="Who is the invoice for?",
        pattern=r"\bfor\s+([A-Z][\w'.-]*(?:\s+[A-Z][\w'.-]*)*)",
        description="Name of the customer being invoiced",
    ),
    "items": FieldSpec(
        name="items",
        prompt="What should the invoice include?",
        pattern=r"\bwith\s+(.+?)\s*$",
        description="Products and quantities on the invoice",
    ),
}


def build_invoice_workflow(entity_store: EntityStore) -> WorkflowDefinition:
    async def create_invoice(collected: Dict[str, Any], context: SessionContext) -> Dict[str, Any]:
        customer = collected.get("customer")
        customer_name = customer.get("name") if isinstance(customer, dict) else customer
        invoice = await entity_store.create(
            "invoice",
            {
                "customer_id": collected["customer_id"],
                "customer_name": customer_name,
                "items": collected["items"],
            },
        )
        return invoice

    return WorkflowDefinition(
        workflow_id="create_invoice",
        goal="Create an invoice for an existing customer with the requested items.",
        title="invoice",
        fields=dict(INVOICE_FIELDS),
        entities={
            "customer": EntitySpec(
                name="customer",
                model="customer",
                search_keys=["name", "email"],
                create_if_missing=True,
                subflow="create_customer",
            ),
        },
        final_action=create_invoice,
        confirm_before_complete=True,
        triggers=["create invoice", "new invoice", "create an invoice"],
        success_message="Invoice #{id} created for {customer_name}.",
    )


def build_sample_workflows(entity_store: EntityStore) -> List[WorkflowDefinition]:
    return [build_customer_workflow(entity_store), build_invoice_workflow(entity_store)]


SAMPLE_COLLECTORS = [
    CollectorConfig(
        name="customer_create",
        goal="Register a new customer",
        description="Collects a customer's name and contact details",
        triggers=["add customer", "register customer"],
        workflow_id="create_customer",
    ),
]


def register_samples(
    workflows: WorkflowRegistry, collectors: CollectorRegistry, entity_store: EntityStore
) -> None:
    for definition in build_sample_workflows(entity_store):
        workflows.register(definition)
    for config in SAMPLE_COLLECTORS:
        collectors.register(config)
