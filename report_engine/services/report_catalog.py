"""Static registry of the entities, fields and one-hop relations a report may reference."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

import sqlalchemy as sa

from report_engine.schemas.reporting import ReportColumnType
from report_engine.services.report_errors import UnknownFieldError

catalog_metadata = sa.MetaData()


class ReportEntity(str, Enum):
    CALL = "call"
    CAMPAIGN = "campaign"
    CAMPAIGN_LIST = "campaign_list"
    LEAD = "lead"
    AGENT = "agent"
    DISPOSITION = "disposition"


@dataclass(frozen=True)
class EntityField:
    name: str
    column: str
    type: ReportColumnType


@dataclass(frozen=True)
class EntityRelation:
    name: str
    target: ReportEntity
    foreign_key: str
    target_key: str


@dataclass(frozen=True)
class EntityDefinition:
    entity: ReportEntity
    table: sa.Table
    primary_key: str
    fields: Mapping[str, EntityField]
    relations: Mapping[str, EntityRelation] = field(default_factory=dict)


def _id_column(name: str = "id", **kwargs: object) -> sa.Column:
    return sa.Column(name, sa.String(36), **kwargs)


call_table = sa.Table(
    "call",
    catalog_metadata,
    _id_column(primary_key=True),
    sa.Column("callId", sa.String(120)),
    sa.Column("direction", sa.String(20)),
    sa.Column("status", sa.String(40)),
    sa.Column("fromNumber", sa.String(40)),
    sa.Column("toNumber", sa.String(40)),
    sa.Column("duration", sa.Integer),
    sa.Column("createdAt", sa.DateTime(timezone=True)),
    sa.Column("answeredAt", sa.DateTime(timezone=True)),
    sa.Column("endedAt", sa.DateTime(timezone=True)),
    _id_column("campaignId"),
    _id_column("leadId"),
    _id_column("agentId"),
)

campaign_table = sa.Table(
    "campaign",
    catalog_metadata,
    _id_column(primary_key=True),
    sa.Column("name", sa.String(200)),
    sa.Column("status", sa.String(40)),
    sa.Column("dialingMode", sa.String(40)),
    sa.Column("createdAt", sa.DateTime(timezone=True)),
)

campaign_list_table = sa.Table(
    "campaign_list",
    catalog_metadata,
    _id_column(primary_key=True),
    sa.Column("name", sa.String(200)),
    _id_column("campaignId"),
    sa.Column("status", sa.String(40)),
    sa.Column("totalLeads", sa.Integer),
    sa.Column("contactedLeads", sa.Integer),
    sa.Column("priority", sa.Integer),
    sa.Column("expiresAt", sa.DateTime(timezone=True)),
    sa.Column("createdAt", sa.DateTime(timezone=True)),
)

lead_table = sa.Table(
    "lead",
    catalog_metadata,
    _id_column(primary_key=True),
    sa.Column("firstName", sa.String(120)),
    sa.Column("lastName", sa.String(120)),
    sa.Column("phoneNumber", sa.String(40)),
    sa.Column("email", sa.String(200)),
    sa.Column("status", sa.String(40)),
    sa.Column("state", sa.String(40)),
    sa.Column("city", sa.String(120)),
    sa.Column("dialAttempts", sa.Integer),
    sa.Column("createdAt", sa.DateTime(timezone=True)),
    sa.Column("lastDialedAt", sa.DateTime(timezone=True)),
    _id_column("listId"),
    _id_column("dispositionId"),
)

agent_table = sa.Table(
    "agent",
    catalog_metadata,
    _id_column(primary_key=True),
    sa.Column("name", sa.String(200)),
    sa.Column("status", sa.String(40)),
    sa.Column("createdAt", sa.DateTime(timezone=True)),
)

disposition_table = sa.Table(
    "disposition",
    catalog_metadata,
    _id_column(primary_key=True),
    sa.Column("code", sa.String(40)),
    sa.Column("name", sa.String(200)),
    sa.Column("category", sa.String(80)),
    sa.Column("createdAt", sa.DateTime(timezone=True)),
)


def _fields(*specs: tuple[str, ReportColumnType]) -> Mapping[str, EntityField]:
    return MappingProxyType({name: EntityField(name, name, kind) for name, kind in specs})


def _relations(*relations: EntityRelation) -> Mapping[str, EntityRelation]:
    return MappingProxyType({relation.name: relation for relation in relations})


_S = ReportColumnType.STRING
_N = ReportColumnType.NUMBER
_D = ReportColumnType.DATE

ENTITY_CATALOG: Mapping[ReportEntity, EntityDefinition] = MappingProxyType(
    {
        ReportEntity.CALL: EntityDefinition(
            entity=ReportEntity.CALL,
            table=call_table,
            primary_key="id",
            fields=_fields(
                ("id", _S),
                ("callId", _S),
                ("direction", _S),
                ("status", _S),
                ("fromNumber", _S),
                ("toNumber", _S),
                ("duration", _N),
                ("createdAt", _D),
                ("answeredAt", _D),
                ("endedAt", _D),
                ("campaignId", _S),
                ("leadId", _S),
                ("agentId", _S),
            ),
            relations=_relations(
                EntityRelation("campaign", ReportEntity.CAMPAIGN, "campaignId", "id"),
                EntityRelation("lead", ReportEntity.LEAD, "leadId", "id"),
                EntityRelation("agent", ReportEntity.AGENT, "agentId", "id"),
            ),
        ),
        ReportEntity.CAMPAIGN: EntityDefinition(
            entity=ReportEntity.CAMPAIGN,
            table=campaign_table,
            primary_key="id",
            fields=_fields(
                ("id", _S),
                ("name", _S),
                ("status", _S),
                ("dialingMode", _S),
                ("createdAt", _D),
            ),
        ),
        ReportEntity.CAMPAIGN_LIST: EntityDefinition(
            entity=ReportEntity.CAMPAIGN_LIST,
            table=campaign_list_table,
            primary_key="id",
            fields=_fields(
                ("id", _S),
                ("name", _S),
                ("campaignId", _S),
                ("status", _S),
                ("totalLeads", _N),
                ("contactedLeads", _N),
                ("priority", _N),
                ("expiresAt", _D),
                ("createdAt", _D),
            ),
            relations=_relations(
                EntityRelation("campaign", ReportEntity.CAMPAIGN, "campaignId", "id"),
            ),
        ),
        ReportEntity.LEAD: EntityDefinition(
            entity=ReportEntity.LEAD,
            table=lead_table,
            primary_key="id",
            fields=_fields(
                ("id", _S),
                ("firstName", _S),
                ("lastName", _S),
                ("phoneNumber", _S),
                ("email", _S),
                ("status", _S),
                ("state", _S),
                ("city", _S),
                ("dialAttempts", _N),
                ("createdAt", _D),
                ("lastDialedAt", _D),
                ("listId", _S),
                ("dispositionId", _S),
            ),
            relations=_relations(
                EntityRelation("list", ReportEntity.CAMPAIGN_LIST, "listId", "id"),
                EntityRelation("disposition", ReportEntity.DISPOSITION, "dispositionId", "id"),
            ),
        ),
        ReportEntity.AGENT: EntityDefinition(
            entity=ReportEntity.AGENT,
            table=agent_table,
            primary_key="id",
            fields=_fields(
                ("id", _S),
                ("name", _S),
                ("status", _S),
                ("createdAt", _D),
            ),
        ),
        ReportEntity.DISPOSITION: EntityDefinition(
            entity=ReportEntity.DISPOSITION,
            table=disposition_table,
            primary_key="id",
            fields=_fields(
                ("id", _S),
                ("code", _S),
                ("name", _S),
                ("category", _S),
                ("createdAt", _D),
            ),
        ),
    }
)


def resolve_entity(entity: str | ReportEntity) -> EntityDefinition:
    try:
        key = ReportEntity(entity)
    except ValueError as exc:
        raise UnknownFieldError(f"Unknown entity '{entity}'.") from exc
    return ENTITY_CATALOG[key]


def resolve_field(entity: str | ReportEntity, field_name: str) -> EntityField:
    definition = resolve_entity(entity)
    resolved = definition.fields.get(field_name)
    if resolved is None:
        raise UnknownFieldError(
            f"Unknown field '{field_name}' on entity '{definition.entity.value}'."
        )
    return resolved


def resolve_relation(entity: str | ReportEntity, relation_name: str) -> EntityRelation:
    definition = resolve_entity(entity)
    relation = definition.relations.get(relation_name)
    if relation is None:
        raise UnknownFieldError(
            f"Entity '{definition.entity.value}' has no relation named '{relation_name}'."
        )
    return relation


def describe_catalog() -> dict[str, dict[str, object]]:
    """Serializable view of the catalog for report designers."""
    return {
        entity.value: {
            "fields": {name: field.type.value for name, field in definition.fields.items()},
            "relations": {
                name: relation.target.value for name, relation in definition.relations.items()
            },
        }
        for entity, definition in ENTITY_CATALOG.items()
    }


__all__ = [
    "ENTITY_CATALOG",
    "EntityDefinition",
    "EntityField",
    "EntityRelation",
    "ReportEntity",
    "catalog_metadata",
    "describe_catalog",
    "resolve_entity",
    "resolve_field",
    "resolve_relation",
]
