"""DynamoDB implementation of the record store."""
from __future__ import annotations

import functools
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import anyio
import boto3
from boto3.dynamodb.conditions import Attr, ConditionBase, Key
from botocore.exceptions import BotoCoreError, ClientError

from .planner import Contains, DateRange, Equals, Filter, KeyCondition, QueryPlan, ScanPlan
from .schema import TABLES, TableSchema
from .storage import ConditionFailedError, ResultPage, StorageError

logger = logging.getLogger("eventhub.dynamodb")


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {key: _from_dynamo(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(item) for item in value]
    return value


def _to_dynamo(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {key: _to_dynamo(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_to_dynamo(item) for item in value]
    return value


def key_condition_expression(condition: KeyCondition) -> ConditionBase:
    expression = Key(condition.partition).eq(condition.value)
    operator = condition.operator
    if operator is None or condition.sort is None:
        return expression
    sort_key = Key(condition.sort)
    if operator == "between":
        return expression & sort_key.between(condition.lower, condition.upper)
    if operator == "<=":
        return expression & sort_key.lte(condition.upper)
    return expression & sort_key.gte(condition.lower)


def filter_expression(filters: Iterable[Filter]) -> Optional[ConditionBase]:
    """Combine post-filters into a single ``FilterExpression``."""

    combined: Optional[ConditionBase] = None
    for candidate in filters:
        parts: List[ConditionBase] = []
        if isinstance(candidate, Equals):
            parts.append(Attr(candidate.attribute).eq(candidate.value))
        elif isinstance(candidate, Contains):
            parts.append(Attr(candidate.attribute).contains(candidate.value))
        elif isinstance(candidate, DateRange):
            if candidate.lower is not None:
                parts.append(Attr(candidate.attribute).gte(candidate.lower))
            if candidate.upper is not None:
                parts.append(Attr(candidate.attribute).lte(candidate.upper))
        for part in parts:
            combined = part if combined is None else combined & part
    return combined


def update_expression(changes: Mapping[str, Any]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    """Build ``SET``/``REMOVE`` clauses; a ``None`` value removes the attribute."""

    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    assignments: List[str] = []
    removals: List[str] = []
    for position, (attribute, value) in enumerate(sorted(changes.items())):
        placeholder = f"#a{position}"
        names[placeholder] = attribute
        if value is None:
            removals.append(placeholder)
        else:
            values[f":v{position}"] = _to_dynamo(value)
            assignments.append(f"{placeholder} = :v{position}")

    clauses = []
    if assignments:
        clauses.append("SET " + ", ".join(assignments))
    if removals:
        clauses.append("REMOVE " + ", ".join(removals))
    return " ".join(clauses), names, values


class DynamoRecordStore:
    """Record store backed by DynamoDB tables named in ``table_names``.

    ``table_names`` maps logical table names (``users``, ``events``,
    ``registrations``) to physical DynamoDB table names.
    """

    def __init__(
        self,
        *,
        resource: Any = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        table_names: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._resource = resource or boto3.resource("dynamodb", region_name=region, endpoint_url=endpoint_url)
        self._table_names = dict(table_names or {})

    def physical_name(self, table: TableSchema) -> str:
        return self._table_names.get(table.name, table.name)

    def _table(self, table: TableSchema) -> Any:
        return self._resource.Table(self.physical_name(table))

    async def _call(self, func: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await anyio.to_thread.run_sync(functools.partial(func, **kwargs))
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code == "ConditionalCheckFailedException":
                raise ConditionFailedError(str(exc)) from exc
            raise StorageError(f"DynamoDB request failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"DynamoDB request failed: {exc}") from exc

    async def get(self, table: TableSchema, key: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        response = await self._call(self._table(table).get_item, Key=dict(key))
        item = response.get("Item")
        return _from_dynamo(item) if item else None

    async def put(self, table: TableSchema, item: Mapping[str, Any], *, if_not_exists: bool = True) -> None:
        document = {key: _to_dynamo(value) for key, value in item.items() if value is not None}
        kwargs: Dict[str, Any] = {"Item": document}
        if if_not_exists:
            kwargs["ConditionExpression"] = Attr(table.hash_key).not_exists()
        await self._call(self._table(table).put_item, **kwargs)

    async def update(
        self,
        table: TableSchema,
        key: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Dict[str, Any]:
        touched_keys = set(changes) & set(table.key_attributes)
        if touched_keys:
            raise ValueError(f"Key attributes cannot be updated: {', '.join(sorted(touched_keys))}")

        expression, names, values = update_expression(changes)
        kwargs: Dict[str, Any] = {
            "Key": dict(key),
            "UpdateExpression": expression,
            "ExpressionAttributeNames": names,
            "ConditionExpression": Attr(table.hash_key).exists(),
            "ReturnValues": "ALL_NEW",
        }
        if values:
            kwargs["ExpressionAttributeValues"] = values
        response = await self._call(self._table(table).update_item, **kwargs)
        return _from_dynamo(response.get("Attributes", {}))

    async def query(self, table: TableSchema, plan: QueryPlan) -> ResultPage:
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": key_condition_expression(plan.key_condition),
            "Limit": plan.limit,
            "ScanIndexForward": plan.forward,
        }
        if plan.index is not None:
            kwargs["IndexName"] = plan.index
        return await self._page(self._table(table).query, kwargs, plan.filters, plan.start_key)

    async def scan(self, table: TableSchema, plan: ScanPlan) -> ResultPage:
        kwargs: Dict[str, Any] = {"Limit": plan.limit}
        return await self._page(self._table(table).scan, kwargs, plan.filters, plan.start_key)

    async def _page(
        self,
        func: Callable[..., Any],
        kwargs: Dict[str, Any],
        filters: Iterable[Filter],
        start_key: Optional[Mapping[str, Any]],
    ) -> ResultPage:
        predicate = filter_expression(filters)
        if predicate is not None:
            kwargs["FilterExpression"] = predicate
        if start_key:
            kwargs["ExclusiveStartKey"] = _to_dynamo(dict(start_key))
        response = await self._call(func, **kwargs)
        items = [_from_dynamo(item) for item in response.get("Items", [])]
        last_key = response.get("LastEvaluatedKey")
        return ResultPage(
            items=items,
            count=int(response.get("Count", len(items))),
            last_key=_from_dynamo(last_key) if last_key else None,
        )

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------
    def table_definition(self, table: TableSchema) -> Dict[str, Any]:
        attributes: Dict[str, str] = {}

        def key_schema(partition: str, sort: Optional[str]) -> List[Dict[str, str]]:
            schema = [{"AttributeName": partition, "KeyType": "HASH"}]
            attributes[partition] = "S"
            if sort:
                schema.append({"AttributeName": sort, "KeyType": "RANGE"})
                attributes[sort] = "S"
            return schema

        definition: Dict[str, Any] = {
            "TableName": self.physical_name(table),
            "KeySchema": key_schema(table.hash_key, table.range_key),
            "BillingMode": "PAY_PER_REQUEST",
        }
        if table.indexes:
            definition["GlobalSecondaryIndexes"] = [
                {
                    "IndexName": index.name,
                    "KeySchema": key_schema(index.partition, index.sort),
                    "Projection": {"ProjectionType": "ALL"},
                }
                for index in table.indexes
            ]
        definition["AttributeDefinitions"] = [
            {"AttributeName": name, "AttributeType": kind} for name, kind in sorted(attributes.items())
        ]
        return definition

    def provision(self, tables: Iterable[TableSchema] = TABLES) -> List[str]:
        """Create any missing tables and wait until they are active."""

        client = self._resource.meta.client
        try:
            existing = set(client.list_tables().get("TableNames", []))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Unable to list DynamoDB tables: {exc}") from exc

        created: List[str] = []
        for table in tables:
            name = self.physical_name(table)
            if name in existing:
                logger.info("DynamoDB table %s already exists", name)
                continue
            try:
                client.create_table(**self.table_definition(table))
                client.get_waiter("table_exists").wait(TableName=name)
            except (BotoCoreError, ClientError) as exc:
                raise StorageError(f"Unable to create DynamoDB table {name}: {exc}") from exc
            logger.info("Created DynamoDB table %s", name)
            created.append(name)
        return created


__all__ = [
    "DynamoRecordStore",
    "filter_expression",
    "key_condition_expression",
    "update_expression",
]
