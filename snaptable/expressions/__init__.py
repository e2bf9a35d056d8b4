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
"""Row filters over the columns of a table.

Expressions are built unbound, referencing columns by name, and bound to a
schema before they are evaluated. Binding resolves the column and coerces the
literals to the internal representation of the column type, dates for example
become days since epoch:

    >>> from snaptable.expressions import And, GreaterThanOrEqual, LessThanOrEqual
    >>> expr = And(GreaterThanOrEqual("id", 5), LessThanOrEqual("id", 9))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Set, Tuple, Type, Union

from snaptable.conversions import to_py_value
from snaptable.schema import Schema
from snaptable.types import NestedField
from snaptable.utils.singleton import Singleton


def _to_unbound_term(term: Union[str, UnboundTerm]) -> UnboundTerm:
    return Reference(term) if isinstance(term, str) else term


class BooleanExpression(ABC):
    """An expression that evaluates to a boolean."""

    @abstractmethod
    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""

    def __and__(self, other: BooleanExpression) -> BooleanExpression:
        """Perform and operation on another expression."""
        if not isinstance(other, BooleanExpression):
            raise ValueError(f"Expected BooleanExpression, got: {other}")

        return And(self, other)

    def __or__(self, other: BooleanExpression) -> BooleanExpression:
        """Perform or operation on another expression."""
        if not isinstance(other, BooleanExpression):
            raise ValueError(f"Expected BooleanExpression, got: {other}")

        return Or(self, other)


class Term:
    """A simple expression that evaluates to a value."""


class Bound:
    """Represents a bound value expression."""


class Unbound(ABC):
    """Represents an unbound value expression."""

    @abstractmethod
    def bind(self, schema: Schema, case_sensitive: bool = True) -> Union[Bound, BooleanExpression]: ...


class BoundTerm(Term, Bound, ABC):
    """Represents a bound term."""

    @abstractmethod
    def ref(self) -> BoundReference:
        """Return the bound reference."""


class BoundReference(BoundTerm):
    """A reference bound to a field in a schema.

    Args:
        field (NestedField): A referenced field in a table schema.
    """

    field: NestedField

    def __init__(self, field: NestedField):
        self.field = field

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the BoundReference class."""
        return self.field == other.field if isinstance(other, BoundReference) else False

    def __hash__(self) -> int:
        """Return hash value of the BoundReference class."""
        return hash(self.field.field_id)

    def __repr__(self) -> str:
        """Return the string representation of the BoundReference class."""
        return f"BoundReference(field={repr(self.field)})"

    def ref(self) -> BoundReference:
        return self


class UnboundTerm(Term, Unbound, ABC):
    """Represents an unbound term."""

    @abstractmethod
    def bind(self, schema: Schema, case_sensitive: bool = True) -> BoundTerm: ...


class Reference(UnboundTerm):
    """A reference not yet bound to a field in a schema.

    Args:
        name (str): The name of the field.

    Note:
        An unbound reference is sometimes referred to as a "named" reference.
    """

    name: str

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        """Return the string representation of the Reference class."""
        return f"Reference(name={repr(self.name)})"

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the Reference class."""
        return self.name == other.name if isinstance(other, Reference) else False

    def __hash__(self) -> int:
        """Return hash value of the Reference class."""
        return hash(self.name)

    def bind(self, schema: Schema, case_sensitive: bool = True) -> BoundReference:
        """Bind the reference to a schema.

        Args:
            schema (Schema): A table schema.
            case_sensitive (bool): Whether to consider case when binding the reference to the field.

        Raises:
            ValueError: If the column does not exist in the schema.

        Returns:
            BoundReference: A reference bound to the specific field in the schema.
        """
        field = schema.find_field(name_or_id=self.name, case_sensitive=case_sensitive)
        return BoundReference(field=field)


class And(BooleanExpression):
    """AND operation expression - logical conjunction."""

    left: BooleanExpression
    right: BooleanExpression

    def __new__(cls, left: BooleanExpression, right: BooleanExpression, *rest: BooleanExpression) -> BooleanExpression:  # type: ignore
        if rest:
            return And(And(left, right), *rest)
        if left is AlwaysFalse() or right is AlwaysFalse():
            return AlwaysFalse()
        elif left is AlwaysTrue():
            return right
        elif right is AlwaysTrue():
            return left
        else:
            return super().__new__(cls)

    def __init__(self, left: BooleanExpression, right: BooleanExpression, *rest: BooleanExpression) -> None:
        # __new__ can hand back one of the operands, which must stay untouched
        if not hasattr(self, "left") and not hasattr(self, "right"):
            self.left = left
            self.right = right

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the And class."""
        return self.left == other.left and self.right == other.right if isinstance(other, And) else False

    def __hash__(self) -> int:
        """Return hash value of the And class."""
        return hash(("and", self.left, self.right))

    def __repr__(self) -> str:
        """Return the string representation of the And class."""
        return f"And(left={repr(self.left)}, right={repr(self.right)})"

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        # De Morgan's law: not (A and B) = (not A) or (not B)
        return Or(~self.left, ~self.right)

    def __getnewargs__(self) -> Tuple[BooleanExpression, BooleanExpression]:
        """Pickle the And class."""
        return (self.left, self.right)


class Or(BooleanExpression):
    """OR operation expression - logical disjunction."""

    left: BooleanExpression
    right: BooleanExpression

    def __new__(cls, left: BooleanExpression, right: BooleanExpression, *rest: BooleanExpression) -> BooleanExpression:  # type: ignore
        if rest:
            return Or(Or(left, right), *rest)
        if left is AlwaysTrue() or right is AlwaysTrue():
            return AlwaysTrue()
        elif left is AlwaysFalse():
            return right
        elif right is AlwaysFalse():
            return left
        else:
            return super().__new__(cls)

    def __init__(self, left: BooleanExpression, right: BooleanExpression, *rest: BooleanExpression) -> None:
        if not hasattr(self, "left") and not hasattr(self, "right"):
            self.left = left
            self.right = right

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the Or class."""
        return self.left == other.left and self.right == other.right if isinstance(other, Or) else False

    def __hash__(self) -> int:
        """Return hash value of the Or class."""
        return hash(("or", self.left, self.right))

    def __repr__(self) -> str:
        """Return the string representation of the Or class."""
        return f"Or(left={repr(self.left)}, right={repr(self.right)})"

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        # De Morgan's law: not (A or B) = (not A) and (not B)
        return And(~self.left, ~self.right)

    def __getnewargs__(self) -> Tuple[BooleanExpression, BooleanExpression]:
        """Pickle the Or class."""
        return (self.left, self.right)


class Not(BooleanExpression):
    """NOT operation expression - logical negation."""

    child: BooleanExpression

    def __new__(cls, child: BooleanExpression) -> BooleanExpression:  # type: ignore
        if child is AlwaysTrue():
            return AlwaysFalse()
        elif child is AlwaysFalse():
            return AlwaysTrue()
        elif isinstance(child, Not):
            return child.child
        return super().__new__(cls)

    def __init__(self, child: BooleanExpression) -> None:
        if not hasattr(self, "child"):
            self.child = child

    def __repr__(self) -> str:
        """Return the string representation of the Not class."""
        return f"Not(child={repr(self.child)})"

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the Not class."""
        return self.child == other.child if isinstance(other, Not) else False

    def __hash__(self) -> int:
        """Return hash value of the Not class."""
        return hash(("not", self.child))

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        return self.child

    def __getnewargs__(self) -> Tuple[BooleanExpression]:
        """Pickle the Not class."""
        return (self.child,)


class AlwaysTrue(BooleanExpression, Singleton):
    """TRUE expression."""

    def __invert__(self) -> AlwaysFalse:
        """Transform the Expression into its negated version."""
        return AlwaysFalse()

    def __repr__(self) -> str:
        """Return the string representation of the AlwaysTrue class."""
        return "AlwaysTrue()"


class AlwaysFalse(BooleanExpression, Singleton):
    """FALSE expression."""

    def __invert__(self) -> AlwaysTrue:
        """Transform the Expression into its negated version."""
        return AlwaysTrue()

    def __repr__(self) -> str:
        """Return the string representation of the AlwaysFalse class."""
        return "AlwaysFalse()"


class BoundPredicate(Bound, BooleanExpression, ABC):
    term: BoundTerm

    def __init__(self, term: BoundTerm):
        self.term = term

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the BoundPredicate class."""
        if isinstance(other, self.__class__):
            return self.term == other.term
        return False

    def __hash__(self) -> int:
        """Return hash value of the BoundPredicate class."""
        return hash((self.__class__.__name__, self.term))

    @property
    @abstractmethod
    def as_unbound(self) -> Type[UnboundPredicate]: ...


class UnboundPredicate(Unbound, BooleanExpression, ABC):
    term: UnboundTerm

    def __init__(self, term: Union[str, UnboundTerm]):
        self.term = _to_unbound_term(term)

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the UnboundPredicate class."""
        return self.term == other.term if isinstance(other, self.__class__) else False

    def __hash__(self) -> int:
        """Return hash value of the UnboundPredicate class."""
        return hash((self.__class__.__name__, self.term))

    @abstractmethod
    def bind(self, schema: Schema, case_sensitive: bool = True) -> BooleanExpression: ...

    @property
    @abstractmethod
    def as_bound(self) -> Type[BoundPredicate]: ...


class UnaryPredicate(UnboundPredicate, ABC):
    def bind(self, schema: Schema, case_sensitive: bool = True) -> BooleanExpression:
        bound_term = self.term.bind(schema, case_sensitive)
        return self.as_bound(bound_term)  # type: ignore

    def __repr__(self) -> str:
        """Return the string representation of the UnaryPredicate class."""
        return f"{str(self.__class__.__name__)}(term={repr(self.term)})"

    def __getnewargs__(self) -> Tuple[UnboundTerm]:
        """Pickle the UnaryPredicate class."""
        return (self.term,)

    @property
    @abstractmethod
    def as_bound(self) -> Type[BoundUnaryPredicate]: ...


class BoundUnaryPredicate(BoundPredicate, ABC):
    def __repr__(self) -> str:
        """Return the string representation of the BoundUnaryPredicate class."""
        return f"{str(self.__class__.__name__)}(term={repr(self.term)})"

    @property
    @abstractmethod
    def as_unbound(self) -> Type[UnaryPredicate]: ...

    def __getnewargs__(self) -> Tuple[BoundTerm]:
        """Pickle the BoundUnaryPredicate class."""
        return (self.term,)


class BoundIsNull(BoundUnaryPredicate):
    def __new__(cls, term: BoundTerm) -> BooleanExpression:  # type: ignore
        if term.ref().field.required:
            return AlwaysFalse()
        return super().__new__(cls)

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        return BoundNotNull(self.term)

    @property
    def as_unbound(self) -> Type[IsNull]:
        return IsNull


class BoundNotNull(BoundUnaryPredicate):
    def __new__(cls, term: BoundTerm) -> BooleanExpression:  # type: ignore
        if term.ref().field.required:
            return AlwaysTrue()
        return super().__new__(cls)

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        return BoundIsNull(self.term)

    @property
    def as_unbound(self) -> Type[NotNull]:
        return NotNull


class IsNull(UnaryPredicate):
    def __invert__(self) -> NotNull:
        """Transform the Expression into its negated version."""
        return NotNull(self.term)

    @property
    def as_bound(self) -> Type[BoundIsNull]:
        return BoundIsNull


class NotNull(UnaryPredicate):
    def __invert__(self) -> IsNull:
        """Transform the Expression into its negated version."""
        return IsNull(self.term)

    @property
    def as_bound(self) -> Type[BoundNotNull]:
        return BoundNotNull


class SetPredicate(UnboundPredicate, ABC):
    literals: Set[Any]

    def __init__(self, term: Union[str, UnboundTerm], literals: Iterable[Any]):
        super().__init__(term)
        self.literals = set(literals)

    def bind(self, schema: Schema, case_sensitive: bool = True) -> BooleanExpression:
        bound_term = self.term.bind(schema, case_sensitive)
        field_type = bound_term.ref().field.field_type
        return self.as_bound(bound_term, {to_py_value(field_type, value) for value in self.literals})  # type: ignore

    def __repr__(self) -> str:
        """Return the string representation of the SetPredicate class."""
        return f"{str(self.__class__.__name__)}({repr(self.term)}, {{{', '.join(sorted(repr(v) for v in self.literals))}}})"

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the SetPredicate class."""
        return self.term == other.term and self.literals == other.literals if isinstance(other, self.__class__) else False

    def __hash__(self) -> int:
        """Return hash value of the SetPredicate class."""
        return hash((self.__class__.__name__, self.term, frozenset(self.literals)))

    def __getnewargs__(self) -> Tuple[UnboundTerm, Set[Any]]:
        """Pickle the SetPredicate class."""
        return (self.term, self.literals)

    @property
    @abstractmethod
    def as_bound(self) -> Type[BoundSetPredicate]: ...


class BoundSetPredicate(BoundPredicate, ABC):
    literals: Set[Any]

    def __init__(self, term: BoundTerm, literals: Set[Any]):
        super().__init__(term)
        self.literals = set(literals)

    def __repr__(self) -> str:
        """Return the string representation of the BoundSetPredicate class."""
        return f"{str(self.__class__.__name__)}({repr(self.term)}, {{{', '.join(sorted(repr(v) for v in self.literals))}}})"

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the BoundSetPredicate class."""
        return self.term == other.term and self.literals == other.literals if isinstance(other, self.__class__) else False

    def __hash__(self) -> int:
        """Return hash value of the BoundSetPredicate class."""
        return hash((self.__class__.__name__, self.term, frozenset(self.literals)))

    def __getnewargs__(self) -> Tuple[BoundTerm, Set[Any]]:
        """Pickle the BoundSetPredicate class."""
        return (self.term, self.literals)

    @property
    @abstractmethod
    def as_unbound(self) -> Type[SetPredicate]: ...


class BoundIn(BoundSetPredicate):
    def __new__(cls, term: BoundTerm, literals: Set[Any]) -> BooleanExpression:  # type: ignore
        count = len(literals)
        if count == 0:
            return AlwaysFalse()
        elif count == 1:
            return BoundEqualTo(term, next(iter(literals)))
        else:
            return super().__new__(cls)

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        return BoundNotIn(self.term, self.literals)

    @property
    def as_unbound(self) -> Type[In]:
        return In


class BoundNotIn(BoundSetPredicate):
    def __new__(cls, term: BoundTerm, literals: Set[Any]) -> BooleanExpression:  # type: ignore
        count = len(literals)
        if count == 0:
            return AlwaysTrue()
        elif count == 1:
            return BoundNotEqualTo(term, next(iter(literals)))
        else:
            return super().__new__(cls)

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        return BoundIn(self.term, self.literals)

    @property
    def as_unbound(self) -> Type[NotIn]:
        return NotIn


class In(SetPredicate):
    def __new__(cls, term: Union[str, UnboundTerm], literals: Iterable[Any]) -> BooleanExpression:  # type: ignore
        literals_set = set(literals)
        count = len(literals_set)
        if count == 0:
            return AlwaysFalse()
        elif count == 1:
            return EqualTo(term, next(iter(literals_set)))
        else:
            return super().__new__(cls)

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        return NotIn(self.term, self.literals)

    @property
    def as_bound(self) -> Type[BoundIn]:
        return BoundIn


class NotIn(SetPredicate):
    def __new__(cls, term: Union[str, UnboundTerm], literals: Iterable[Any]) -> BooleanExpression:  # type: ignore
        literals_set = set(literals)
        count = len(literals_set)
        if count == 0:
            return AlwaysTrue()
        elif count == 1:
            return NotEqualTo(term, next(iter(literals_set)))
        else:
            return super().__new__(cls)

    def __invert__(self) -> BooleanExpression:
        """Transform the Expression into its negated version."""
        return In(self.term, self.literals)

    @property
    def as_bound(self) -> Type[BoundNotIn]:
        return BoundNotIn


class LiteralPredicate(UnboundPredicate, ABC):
    literal: Any

    def __init__(self, term: Union[str, UnboundTerm], literal: Any):
        super().__init__(term)
        if literal is None:
            raise ValueError("Cannot compare against a null literal, use IsNull or NotNull instead")
        self.literal = literal

    def bind(self, schema: Schema, case_sensitive: bool = True) -> BooleanExpression:
        bound_term = self.term.bind(schema, case_sensitive)
        lit = to_py_value(bound_term.ref().field.field_type, self.literal)
        return self.as_bound(bound_term, lit)  # type: ignore

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the LiteralPredicate class."""
        if isinstance(other, self.__class__):
            return self.term == other.term and self.literal == other.literal
        return False

    def __hash__(self) -> int:
        """Return hash value of the LiteralPredicate class."""
        return hash((self.__class__.__name__, self.term, self.literal))

    def __repr__(self) -> str:
        """Return the string representation of the LiteralPredicate class."""
        return f"{str(self.__class__.__name__)}(term={repr(self.term)}, literal={repr(self.literal)})"

    def __getnewargs__(self) -> Tuple[UnboundTerm, Any]:
        """Pickle the LiteralPredicate class."""
        return (self.term, self.literal)

    @property
    @abstractmethod
    def as_bound(self) -> Type[BoundLiteralPredicate]: ...


class BoundLiteralPredicate(BoundPredicate, ABC):
    literal: Any

    def __init__(self, term: BoundTerm, literal: Any):
        super().__init__(term)
        self.literal = literal

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the BoundLiteralPredicate class."""
        if isinstance(other, self.__class__):
            return self.term == other.term and self.literal == other.literal
        return False

    def __hash__(self) -> int:
        """Return hash value of the BoundLiteralPredicate class."""
        return hash((self.__class__.__name__, self.term, self.literal))

    def __repr__(self) -> str:
        """Return the string representation of the BoundLiteralPredicate class."""
        return f"{str(self.__class__.__name__)}(term={repr(self.term)}, literal={repr(self.literal)})"

    def __getnewargs__(self) -> Tuple[BoundTerm, Any]:
        """Pickle the BoundLiteralPredicate class."""
        return (self.term, self.literal)

    @property
    @abstractmethod
    def as_unbound(self) -> Type[LiteralPredicate]: ...


class BoundEqualTo(BoundLiteralPredicate):
    def __invert__(self) -> BoundNotEqualTo:
        """Transform the Expression into its negated version."""
        return BoundNotEqualTo(self.term, self.literal)

    @property
    def as_unbound(self) -> Type[EqualTo]:
        return EqualTo


class BoundNotEqualTo(BoundLiteralPredicate):
    def __invert__(self) -> BoundEqualTo:
        """Transform the Expression into its negated version."""
        return BoundEqualTo(self.term, self.literal)

    @property
    def as_unbound(self) -> Type[NotEqualTo]:
        return NotEqualTo


class BoundGreaterThanOrEqual(BoundLiteralPredicate):
    def __invert__(self) -> BoundLessThan:
        """Transform the Expression into its negated version."""
        return BoundLessThan(self.term, self.literal)

    @property
    def as_unbound(self) -> Type[GreaterThanOrEqual]:
        return GreaterThanOrEqual


class BoundGreaterThan(BoundLiteralPredicate):
    def __invert__(self) -> BoundLessThanOrEqual:
        """Transform the Expression into its negated version."""
        return BoundLessThanOrEqual(self.term, self.literal)

    @property
    def as_unbound(self) -> Type[GreaterThan]:
        return GreaterThan


class BoundLessThan(BoundLiteralPredicate):
    def __invert__(self) -> BoundGreaterThanOrEqual:
        """Transform the Expression into its negated version."""
        return BoundGreaterThanOrEqual(self.term, self.literal)

    @property
    def as_unbound(self) -> Type[LessThan]:
        return LessThan


class BoundLessThanOrEqual(BoundLiteralPredicate):
    def __invert__(self) -> BoundGreaterThan:
        """Transform the Expression into its negated version."""
        return BoundGreaterThan(self.term, self.literal)

    @property
    def as_unbound(self) -> Type[LessThanOrEqual]:
        return LessThanOrEqual


class EqualTo(LiteralPredicate):
    def __invert__(self) -> NotEqualTo:
        """Transform the Expression into its negated version."""
        return NotEqualTo(self.term, self.literal)

    @property
    def as_bound(self) -> Type[BoundEqualTo]:
        return BoundEqualTo


class NotEqualTo(LiteralPredicate):
    def __invert__(self) -> EqualTo:
        """Transform the Expression into its negated version."""
        return EqualTo(self.term, self.literal)

    @property
    def as_bound(self) -> Type[BoundNotEqualTo]:
        return BoundNotEqualTo


class GreaterThanOrEqual(LiteralPredicate):
    def __invert__(self) -> LessThan:
        """Transform the Expression into its negated version."""
        return LessThan(self.term, self.literal)

    @property
    def as_bound(self) -> Type[BoundGreaterThanOrEqual]:
        return BoundGreaterThanOrEqual


class GreaterThan(LiteralPredicate):
    def __invert__(self) -> LessThanOrEqual:
        """Transform the Expression into its negated version."""
        return LessThanOrEqual(self.term, self.literal)

    @property
    def as_bound(self) -> Type[BoundGreaterThan]:
        return BoundGreaterThan


class LessThan(LiteralPredicate):
    def __invert__(self) -> GreaterThanOrEqual:
        """Transform the Expression into its negated version."""
        return GreaterThanOrEqual(self.term, self.literal)

    @property
    def as_bound(self) -> Type[BoundLessThan]:
        return BoundLessThan


class LessThanOrEqual(LiteralPredicate):
    def __invert__(self) -> GreaterThan:
        """Transform the Expression into its negated version."""
        return GreaterThan(self.term, self.literal)

    @property
    def as_bound(self) -> Type[BoundLessThanOrEqual]:
        return BoundLessThanOrEqual


def between(term: Union[str, UnboundTerm], lower: Any, upper: Any) -> BooleanExpression:
    """Inclusive range filter, ``lower <= term <= upper``."""
    return And(GreaterThanOrEqual(term, lower), LessThanOrEqual(term, upper))
