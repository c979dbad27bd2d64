"""Application orchestration entry points."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine

from merchantsync.adapters.cache import (
    InMemoryEdgeCache,
    InMemoryRegionalStore,
    RedisRegionalStore,
)
from merchantsync.adapters.notion import NotionRecordStore
from merchantsync.adapters.sqlalchemy import SqlAlchemyInteractionLedger, create_all_tables
from merchantsync.adapters.workflow import HttpDurableExecutionFacility
from merchantsync.config import (
    get_cache_config,
    get_database_config,
    get_record_store_config,
    get_sync_config,
    get_workflow_config,
)
from merchantsync.domain.cache import MultiTierProfileCache
from merchantsync.domain.identity import IdentifierType, SelfNumberFilter
from merchantsync.domain.interactions import (
    MerchantContextResolver,
    normalize_call_interaction,
    normalize_mail_interaction,
    normalize_message_interaction,
    publish_merchant_interaction,
)
from merchantsync.domain.model import InteractionType, MerchantProfile, ProfileMapping
from merchantsync.domain.pages import (
    InteractionPageWriter,
    call_layout,
    call_page_properties,
    mail_layout,
    mail_page_properties,
    message_layout,
    message_page_properties,
)
from merchantsync.domain.profiles import ProfileResolver
from merchantsync.domain.reconciliation import CollectionSpec, MerchantIdentityReconciler
from merchantsync.domain.records import iterate_collection
from merchantsync.domain.registry import CanonicalMerchantRegistry
from merchantsync.domain.retrieval import MerchantDataService
from merchantsync.domain.workflow import InProcessWorkflowStep, StepRunner, WorkflowDispatcher

if TYPE_CHECKING:
    from merchantsync.config import CollectionIds, SyncConfig
    from merchantsync.domain.model import (
        CallEvent,
        InteractionAnalysis,
        MailEvent,
        MerchantContext,
        MerchantData,
        MerchantSearchHit,
        MessageEvent,
        ReconciliationResult,
    )
    from merchantsync.domain.pages import PageLayout
    from merchantsync.domain.ports import InteractionLedger, RecordStore, RegionalStore
    from merchantsync.domain.ports.workflow import WorkflowStep

log = getLogger(__name__)

CALL_WORKFLOW = "call-processing"
MESSAGE_WORKFLOW = "message-processing"
MAIL_WORKFLOW = "mail-processing"


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    event_id: str
    page_id: str
    merchant: MerchantContext
    published: bool


class InteractionSyncService:
    """Runs the find-merchant, sync-page and publish-interaction steps for one event."""

    def __init__(
        self,
        *,
        contexts: MerchantContextResolver,
        pages: InteractionPageWriter,
        ledger: InteractionLedger,
        resolver: ProfileResolver,
        collections: CollectionIds,
        config: SyncConfig,
        dispatcher: WorkflowDispatcher | None = None,
    ) -> None:
        self._contexts = contexts
        self._pages = pages
        self._ledger = ledger
        self._resolver = resolver
        self._collections = collections
        self._config = config
        self._dispatcher = dispatcher or WorkflowDispatcher()

    async def sync_call(
        self,
        event: CallEvent,
        analysis: InteractionAnalysis | None = None,
        *,
        step: WorkflowStep | None = None,
    ) -> SyncOutcome:
        runner = self._runner(CALL_WORKFLOW, step, {"callId": event.id})

        async def find_merchant() -> MerchantContext:
            return (await self._contexts.for_call(event)).with_merchant_uuid()

        merchant = await runner.run_step("find-merchant", find_merchant)

        async def sync_page() -> str:
            return await self._pages.upsert(
                call_layout(self._collections.calls),
                event.id,
                call_page_properties(event, analysis),
                merchant,
            )

        page_id = await runner.run_step("sync-page", sync_page)
        interaction = normalize_call_interaction(
            event, merchant, page_id=page_id, analysis=analysis
        )

        async def publish() -> bool:
            return await publish_merchant_interaction(interaction, self._ledger, self._resolver)

        published = await runner.run_step("publish-interaction", publish)
        return SyncOutcome(event_id=event.id, page_id=page_id, merchant=merchant, published=published)

    async def sync_message(
        self,
        event: MessageEvent,
        analysis: InteractionAnalysis | None = None,
        *,
        step: WorkflowStep | None = None,
    ) -> SyncOutcome:
        runner = self._runner(MESSAGE_WORKFLOW, step, {"messageId": event.id})

        async def find_merchant() -> MerchantContext:
            return (await self._contexts.for_message(event)).with_merchant_uuid()

        merchant = await runner.run_step("find-merchant", find_merchant)

        async def sync_page() -> str:
            return await self._pages.upsert(
                message_layout(self._collections.messages),
                event.id,
                message_page_properties(event, analysis),
                merchant,
            )

        page_id = await runner.run_step("sync-page", sync_page)
        interaction = normalize_message_interaction(
            event, merchant, page_id=page_id, analysis=analysis
        )

        async def publish() -> bool:
            return await publish_merchant_interaction(interaction, self._ledger, self._resolver)

        published = await runner.run_step("publish-interaction", publish)
        return SyncOutcome(event_id=event.id, page_id=page_id, merchant=merchant, published=published)

    async def sync_mail(
        self,
        event: MailEvent,
        analysis: InteractionAnalysis | None = None,
        *,
        step: WorkflowStep | None = None,
    ) -> SyncOutcome:
        runner = self._runner(MAIL_WORKFLOW, step, {"mailId": event.id})

        async def find_merchant() -> MerchantContext:
            return (await self._contexts.for_mail(event)).with_merchant_uuid()

        merchant = await runner.run_step("find-merchant", find_merchant)

        async def sync_page() -> str:
            return await self._pages.upsert(
                mail_layout(self._collections.mail),
                event.id,
                mail_page_properties(event, analysis),
                merchant,
            )

        page_id = await runner.run_step("sync-page", sync_page)
        interaction = normalize_mail_interaction(
            event, merchant, page_id=page_id, analysis=analysis
        )

        async def publish() -> bool:
            return await publish_merchant_interaction(
                interaction,
                self._ledger,
                self._resolver,
                mail=event,
                preview_length=self._config.mail_preview_length,
            )

        published = await runner.run_step("publish-interaction", publish)
        return SyncOutcome(event_id=event.id, page_id=page_id, merchant=merchant, published=published)

    async def dispatch_call(self, event: CallEvent, *, fallback: bool = False) -> Any:
        """Hand the call to the durable-execution host, or sync it here."""

        async def local(step: WorkflowStep) -> SyncOutcome:
            return await self.sync_call(event, step=step)

        return await self._dispatcher.trigger(
            CALL_WORKFLOW,
            {"callId": event.id, "phoneNumberId": event.phone_number_id},
            local,
            fallback=fallback,
        )

    async def dispatch_message(self, event: MessageEvent, *, fallback: bool = False) -> Any:
        async def local(step: WorkflowStep) -> SyncOutcome:
            return await self.sync_message(event, step=step)

        return await self._dispatcher.trigger(
            MESSAGE_WORKFLOW,
            {"messageId": event.id, "phoneNumberId": event.phone_number_id},
            local,
            fallback=fallback,
        )

    async def dispatch_mail(self, event: MailEvent, *, fallback: bool = False) -> Any:
        async def local(step: WorkflowStep) -> SyncOutcome:
            return await self.sync_mail(event, step=step)

        return await self._dispatcher.trigger(
            MAIL_WORKFLOW, {"mailId": event.id}, local, fallback=fallback
        )

    @staticmethod
    def _runner(
        workflow_name: str, step: WorkflowStep | None, context: dict[str, Any]
    ) -> StepRunner:
        return StepRunner(workflow_name, step or InProcessWorkflowStep(workflow_name), context)


def interaction_layouts(collections: CollectionIds) -> dict[InteractionType, PageLayout]:
    return {
        InteractionType.CALL: call_layout(collections.calls),
        InteractionType.MESSAGE: message_layout(collections.messages),
        InteractionType.MAIL: mail_layout(collections.mail),
    }


def default_collection_specs(collections: CollectionIds) -> list[CollectionSpec]:
    return [
        CollectionSpec(
            name="profiles",
            collection_id=collections.profiles,
            name_property="Name",
            primary=True,
        ),
        CollectionSpec(name="calls", collection_id=collections.calls, relation_property="Merchant"),
        CollectionSpec(
            name="messages", collection_id=collections.messages, relation_property="Merchant"
        ),
        CollectionSpec(name="mail", collection_id=collections.mail, relation_property="Merchant"),
    ]


@dataclass(slots=True)
class Services:
    store: RecordStore
    registry: CanonicalMerchantRegistry
    resolver: ProfileResolver
    cache: MultiTierProfileCache
    reconciler: MerchantIdentityReconciler
    ledger: InteractionLedger
    sync: InteractionSyncService
    retrieval: MerchantDataService
    regional: RegionalStore

    async def aclose(self) -> None:
        await self.cache.drain()
        for resource in (self.store, self.regional):
            aclose = getattr(resource, "aclose", None)
            if aclose is not None:
                await aclose()


def build_services() -> Services:
    """Wire the adapters from environment configuration."""

    store_config = get_record_store_config()
    cache_config = get_cache_config()
    sync_config = get_sync_config()
    collections = store_config.collections

    store = NotionRecordStore(api_key=store_config.api_key, resilience=store_config.resilience)
    registry = CanonicalMerchantRegistry(
        store, collections.canonical, page_size=sync_config.query_page_size
    )
    resolver = ProfileResolver(store, collections.profiles, registry)

    regional: RegionalStore
    if cache_config.redis_url:
        regional = RedisRegionalStore.from_url(cache_config.redis_url)
    else:
        log.warning("REDIS_URL not set; regional profile cache is process-local")
        regional = InMemoryRegionalStore()
    cache = MultiTierProfileCache(
        InMemoryEdgeCache(),
        regional,
        resolver,
        version=cache_config.version,
        edge_ttl_seconds=cache_config.edge_ttl_seconds,
        regional_ttl_seconds=cache_config.regional_ttl_seconds,
    )

    engine = create_engine(get_database_config().uri)
    create_all_tables(engine)
    ledger = SqlAlchemyInteractionLedger(engine)

    workflow_resilience = get_workflow_config().resilience()
    facility = (
        HttpDurableExecutionFacility(workflow_resilience) if workflow_resilience else None
    )

    reconciler = MerchantIdentityReconciler(
        store,
        resolver,
        registry,
        default_collection_specs(collections),
        page_size=sync_config.query_page_size,
    )
    sync = InteractionSyncService(
        contexts=MerchantContextResolver(
            cache, resolver, self_numbers=SelfNumberFilter.parse(store_config.self_phone_numbers)
        ),
        pages=InteractionPageWriter(store),
        ledger=ledger,
        resolver=resolver,
        collections=collections,
        config=sync_config,
        dispatcher=WorkflowDispatcher(facility),
    )
    return Services(
        store=store,
        registry=registry,
        resolver=resolver,
        cache=cache,
        reconciler=reconciler,
        ledger=ledger,
        sync=sync,
        retrieval=MerchantDataService(
            ledger,
            resolver,
            store,
            interaction_layouts(collections),
            page_size=sync_config.query_page_size,
        ),
        regional=regional,
    )


async def reconcile_merchant_uuids(services: Services) -> ReconciliationResult:
    log.info(
        "Starting merchant UUID reconciliation over %d collection(s)",
        len(services.reconciler.collections),
    )
    return await services.reconciler.reconcile()


async def warm_profile_cache(services: Services, *, page_size: int = 100) -> int:
    """Load every profile's phone and email into the cache tiers."""

    mappings: list[ProfileMapping] = []
    async for record in iterate_collection(
        services.store, services.resolver.collection_id, page_size=page_size
    ):
        profile = MerchantProfile.from_record(record, services.resolver.fields)
        mappings.extend(profile_mappings(profile))
    count = await services.cache.warm_up(mappings)
    log.info("Warmed %d profile mapping(s)", count)
    return count


def profile_mappings(profile: MerchantProfile) -> list[ProfileMapping]:
    mappings: list[ProfileMapping] = []
    if profile.contact_phone:
        mappings.append(
            ProfileMapping(
                identifier=profile.contact_phone,
                identifier_type=IdentifierType.PHONE,
                profile_id=profile.profile_id,
                merchant_uuid=profile.merchant_uuid,
            )
        )
    if profile.contact_email:
        mappings.append(
            ProfileMapping(
                identifier=profile.contact_email,
                identifier_type=IdentifierType.EMAIL,
                profile_id=profile.profile_id,
                merchant_uuid=profile.merchant_uuid,
            )
        )
    return mappings


async def load_merchant_data(
    services: Services,
    *,
    profile_id: str | None = None,
    phone: str | None = None,
    email: str | None = None,
) -> MerchantData | None:
    """Load a merchant's history by exactly one of profile id, phone or email."""

    given = [value for value in (profile_id, phone, email) if value]
    if len(given) != 1:
        raise ValueError("Exactly one of profile_id, phone or email is required")
    if profile_id:
        return await services.retrieval.by_profile(profile_id)
    if phone:
        return await services.retrieval.by_phone(phone)
    return await services.retrieval.by_email(email or "")


async def search_merchants(
    services: Services, query: str, *, limit: int = 10
) -> list[MerchantSearchHit]:
    return await services.retrieval.search(query, limit)
