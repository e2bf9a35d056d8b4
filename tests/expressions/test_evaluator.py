# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
from typing import Any, Dict

import pytest

from snaptable.conversions import to_bytes
from snaptable.expressions import (
    AlwaysFalse,
    AlwaysTrue,
    And,
    BooleanExpression,
    EqualTo,
    GreaterThan,
    GreaterThanOrEqual,
    In,
    IsNull,
    LessThan,
    LessThanOrEqual,
    Not,
    NotEqualTo,
    NotIn,
    NotNull,
    Or,
)
from snaptable.expressions.visitors import IN_PREDICATE_LIMIT, _InclusiveMetricsEvaluator
from snaptable.manifest import DataFile
from snaptable.partitioning import PartitionField, PartitionSpec
from snaptable.schema import Schema
from snaptable.types import LongType, NestedField, StringType

INT_MIN_VALUE = 30
INT_MAX_VALUE = 79


@pytest.fixture
def schema() -> Schema:
    return Schema(
        NestedField(1, "id", LongType(), required=True),
        NestedField(2, "no_stats", LongType(), required=False),
        NestedField(3, "all_nulls", StringType(), required=False),
        NestedField(4, "some_nulls", StringType(), required=False),
        NestedField(5, "no_nulls", StringType(), required=False),
        NestedField(6, "region", StringType(), required=False),
    )


@pytest.fixture
def spec() -> PartitionSpec:
    return PartitionSpec(PartitionField(source_id=6, field_id=1000, name="region"))


def _data_file(**kwargs: Any) -> DataFile:
    arguments: Dict[str, Any] = {
        "file_path": "file_1.parquet",
        "record_count": 50,
        "file_size_in_bytes": 3,
        "partition": {"region": "eu"},
        "value_counts": {3: 50, 4: 50, 5: 50},
        "null_value_counts": {3: 50, 4: 10, 5: 0},
        "lower_bounds": {1: to_bytes(LongType(), INT_MIN_VALUE), 4: b"a", 5: b"b"},
        "upper_bounds": {1: to_bytes(LongType(), INT_MAX_VALUE), 4: b"y", 5: b"z"},
    }
    arguments.update(kwargs)
    return DataFile(**arguments)


@pytest.fixture
def data_file() -> DataFile:
    return _data_file()


def _eval(schema: Schema, expr: BooleanExpression, data_file: DataFile, spec: Any = None, case_sensitive: bool = True) -> bool:
    return _InclusiveMetricsEvaluator(schema, expr, spec, case_sensitive=case_sensitive).eval(data_file)


@pytest.mark.parametrize(
    "expr, expected",
    [
        (AlwaysTrue(), True),
        (AlwaysFalse(), False),
        (LessThan("id", INT_MIN_VALUE - 25), False),
        (LessThan("id", INT_MIN_VALUE), False),
        (LessThan("id", INT_MIN_VALUE + 1), True),
        (LessThan("id", INT_MAX_VALUE), True),
        (LessThanOrEqual("id", INT_MIN_VALUE - 1), False),
        (LessThanOrEqual("id", INT_MIN_VALUE), True),
        (GreaterThan("id", INT_MAX_VALUE + 6), False),
        (GreaterThan("id", INT_MAX_VALUE), False),
        (GreaterThan("id", INT_MAX_VALUE - 1), True),
        (GreaterThanOrEqual("id", INT_MAX_VALUE + 1), False),
        (GreaterThanOrEqual("id", INT_MAX_VALUE), True),
        (EqualTo("id", INT_MIN_VALUE - 25), False),
        (EqualTo("id", INT_MIN_VALUE - 1), False),
        (EqualTo("id", INT_MIN_VALUE), True),
        (EqualTo("id", INT_MAX_VALUE - 4), True),
        (EqualTo("id", INT_MAX_VALUE), True),
        (EqualTo("id", INT_MAX_VALUE + 1), False),
        (NotEqualTo("id", INT_MIN_VALUE - 25), True),
        (NotEqualTo("id", INT_MIN_VALUE), True),
        (In("id", {INT_MIN_VALUE - 25, INT_MIN_VALUE - 24}), False),
        (In("id", {INT_MIN_VALUE - 1, INT_MIN_VALUE}), True),
        (In("id", {INT_MAX_VALUE, INT_MAX_VALUE + 1}), True),
        (In("id", {INT_MAX_VALUE + 1, INT_MAX_VALUE + 2}), False),
        (NotIn("id", {INT_MIN_VALUE, INT_MAX_VALUE}), True),
    ],
)
def test_column_bounds(schema: Schema, data_file: DataFile, expr: BooleanExpression, expected: bool) -> None:
    assert _eval(schema, expr, data_file) is expected


def test_in_with_too_many_values(schema: Schema, data_file: DataFile) -> None:
    literals = set(range(INT_MAX_VALUE + 1, INT_MAX_VALUE + 2 + IN_PREDICATE_LIMIT))

    assert _eval(schema, In("id", literals), data_file) is True
    assert _eval(schema, In("id", set(range(INT_MAX_VALUE + 1, INT_MAX_VALUE + 3))), data_file) is False


def test_missing_stats_never_exclude(schema: Schema, data_file: DataFile) -> None:
    for expr in (
        LessThan("no_stats", 5),
        GreaterThan("no_stats", 5),
        EqualTo("no_stats", 5),
        In("no_stats", {5, 6}),
        IsNull("no_stats"),
        NotNull("no_stats"),
    ):
        assert _eval(schema, expr, data_file) is True, expr


@pytest.mark.parametrize(
    "expr, expected",
    [
        (IsNull("all_nulls"), True),
        (NotNull("all_nulls"), False),
        (LessThan("all_nulls", "a"), False),
        (GreaterThanOrEqual("all_nulls", "a"), False),
        (EqualTo("all_nulls", "a"), False),
        (NotEqualTo("all_nulls", "a"), True),
        (In("all_nulls", {"a", "b"}), False),
        (IsNull("some_nulls"), True),
        (NotNull("some_nulls"), True),
        (IsNull("no_nulls"), False),
        (NotNull("no_nulls"), True),
        (EqualTo("no_nulls", "a"), False),
        (EqualTo("no_nulls", "c"), True),
    ],
)
def test_null_counts(schema: Schema, data_file: DataFile, expr: BooleanExpression, expected: bool) -> None:
    assert _eval(schema, expr, data_file) is expected


def test_required_column_is_never_null(schema: Schema, data_file: DataFile) -> None:
    assert _eval(schema, IsNull("id"), data_file) is False
    assert _eval(schema, NotNull("id"), data_file) is True


@pytest.mark.parametrize(
    "expr, expected",
    [
        (And(LessThan("id", INT_MIN_VALUE - 25), GreaterThanOrEqual("id", INT_MIN_VALUE - 30)), False),
        (And(LessThan("id", INT_MIN_VALUE + 1), GreaterThanOrEqual("id", INT_MIN_VALUE - 30)), True),
        (Or(LessThan("id", INT_MIN_VALUE - 25), GreaterThanOrEqual("id", INT_MAX_VALUE + 1)), False),
        (Or(LessThan("id", INT_MIN_VALUE - 25), GreaterThanOrEqual("id", INT_MAX_VALUE - 19)), True),
        (Not(LessThan("id", INT_MIN_VALUE - 25)), True),
        (Not(GreaterThanOrEqual("id", INT_MIN_VALUE)), False),
    ],
)
def test_compound_expressions(schema: Schema, data_file: DataFile, expr: BooleanExpression, expected: bool) -> None:
    assert _eval(schema, expr, data_file) is expected


def test_empty_file_cannot_match(schema: Schema) -> None:
    empty = _data_file(record_count=0)

    assert _eval(schema, AlwaysTrue(), empty) is False
    assert _InclusiveMetricsEvaluator(schema, AlwaysTrue(), include_empty_files=True).eval(empty) is True


def test_unknown_record_count_might_match(schema: Schema) -> None:
    assert _eval(schema, AlwaysFalse(), _data_file(record_count=-1)) is True


def test_identity_partition_values(schema: Schema, spec: PartitionSpec, data_file: DataFile) -> None:
    assert _eval(schema, EqualTo("region", "eu"), data_file, spec) is True
    assert _eval(schema, EqualTo("region", "us"), data_file, spec) is False
    assert _eval(schema, NotEqualTo("region", "eu"), data_file, spec) is False
    assert _eval(schema, In("region", {"us", "apac"}), data_file, spec) is False
    assert _eval(schema, NotIn("region", {"eu", "apac"}), data_file, spec) is False
    assert _eval(schema, IsNull("region"), data_file, spec) is False
    assert _eval(schema, GreaterThan("region", "eu"), data_file, spec) is False


def test_null_partition_value(schema: Schema, spec: PartitionSpec) -> None:
    data_file = _data_file(partition={"region": None})

    assert _eval(schema, IsNull("region"), data_file, spec) is True
    assert _eval(schema, NotNull("region"), data_file, spec) is False
    assert _eval(schema, EqualTo("region", "eu"), data_file, spec) is False


def test_partition_values_of_another_spec_are_ignored(schema: Schema, spec: PartitionSpec) -> None:
    data_file = _data_file(spec_id=1)
    assert _eval(schema, EqualTo("region", "us"), data_file, spec) is True


def test_unpartitioned_evaluation_ignores_partition_values(schema: Schema, data_file: DataFile) -> None:
    assert _eval(schema, EqualTo("region", "us"), data_file) is True


def test_case_insensitive(schema: Schema, data_file: DataFile) -> None:
    assert _eval(schema, EqualTo("ID", INT_MAX_VALUE + 1), data_file, case_sensitive=False) is False

    with pytest.raises(ValueError, match="Could not find field with name ID, case_sensitive=True"):
        _eval(schema, EqualTo("ID", INT_MAX_VALUE + 1), data_file)
