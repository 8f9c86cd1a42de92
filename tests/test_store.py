"""Tests for Store reads and writes."""

import pytest

from atomstore import (
    CycleError,
    NotWritableError,
    Store,
    create_store,
    primitive,
    read_only,
    writable,
    write_only,
)


class TestRead:
    def test_primitive_default(self):
        store = Store()
        a = primitive(42)
        assert store.get(a) == 42

    def test_lazy_eval(self):
        call_count = 0
        base = primitive(5)

        def fn(get):
            nonlocal call_count
            call_count += 1
            return get(base) * 2

        doubled = read_only(fn)
        store = Store()
        assert call_count == 0  # not yet evaluated
        assert store.get(doubled) == 10
        assert call_count == 1

    def test_caches_until_dependency_changes(self):
        call_count = 0
        base = primitive(5)

        def fn(get):
            nonlocal call_count
            call_count += 1
            return get(base) * 2

        doubled = read_only(fn)
        store = Store()
        first = store.get(doubled)
        second = store.get(doubled)
        assert first is second
        assert call_count == 1  # cached, no re-eval

    def test_invalidation(self):
        base = primitive(5)
        doubled = read_only(lambda get: get(base) * 2)
        store = Store()
        assert store.get(doubled) == 10
        store.set(base, 10)
        assert store.get(doubled) == 20

    def test_chained(self):
        base = primitive(3)
        doubled = read_only(lambda get: get(base) * 2)
        quadrupled = read_only(lambda get: get(doubled) * 2)
        store = Store()
        assert store.get(quadrupled) == 12
        store.set(base, 5)
        assert store.get(quadrupled) == 20

    def test_unchanged_intermediate_stops_recompute(self):
        calls = 0
        base = primitive(1)
        parity = read_only(lambda get: get(base) % 2)

        def fn(get):
            nonlocal calls
            calls += 1
            return "odd" if get(parity) else "even"

        label = read_only(fn)
        store = Store()
        assert store.get(label) == "odd"
        store.set(base, 3)
        assert store.get(label) == "odd"
        assert calls == 1

    def test_diamond_evaluates_once(self):
        calls = 0
        a = primitive(1)
        b = read_only(lambda get: get(a) + 1)
        c = read_only(lambda get: get(a) * 2)

        def fn(get):
            nonlocal calls
            calls += 1
            return get(b) + get(c)

        d = read_only(fn)
        store = Store()
        assert store.get(d) == 4
        store.set(a, 2)
        assert store.get(d) == 7
        assert calls == 2

    def test_stores_are_independent(self):
        a = primitive(1)
        doubled = read_only(lambda get: get(a) * 2)
        one, two = Store(), Store()
        one.set(a, 10)
        assert one.get(doubled) == 20
        assert two.get(doubled) == 2


class TestDependencies:
    def test_conditional_dependencies_rebuilt(self):
        flag = primitive(True)
        a = primitive(1)
        b = primitive(2)
        c = read_only(lambda get: get(a) if get(flag) else get(b))
        store = Store()

        assert store.get(c) == 1
        assert store.dependencies_of(c) == {flag, a}
        assert store.dependents_of(a) == {c}

        store.set(flag, False)
        assert store.get(c) == 2  # now depends on b, not a
        assert store.dependencies_of(c) == {flag, b}
        assert store.dependents_of(a) == frozenset()
        assert store.dependents_of(b) == {c}

    def test_old_branch_no_longer_triggers(self):
        calls = 0
        flag = primitive(False)
        a = primitive(1)
        b = primitive(2)

        def fn(get):
            nonlocal calls
            calls += 1
            return get(a) if get(flag) else get(b)

        c = read_only(fn)
        store = Store()
        store.get(c)
        store.set(a, 100)
        store.get(c)
        assert calls == 1

    def test_dependents_mirror_dependencies(self):
        a = primitive(1)
        b = read_only(lambda get: get(a) + 1)
        c = read_only(lambda get: get(a) + get(b))
        store = Store()
        store.get(c)
        for atom in (a, b, c):
            for dep in store.dependencies_of(atom):
                assert atom in store.dependents_of(dep)
            for dependent in store.dependents_of(atom):
                assert atom in store.dependencies_of(dependent)


class TestWrite:
    def test_set_value(self):
        store = Store()
        a = primitive(0)
        store.set(a, 42)
        assert store.get(a) == 42

    def test_functional_update(self):
        store = Store()
        counter = primitive(1)
        store.set(counter, lambda prev: prev + 1)
        assert store.get(counter) == 2

    def test_not_writable(self):
        a = primitive(1)
        doubled = read_only(lambda get: get(a) * 2)
        store = Store()
        with pytest.raises(NotWritableError) as info:
            store.set(doubled, 3)
        assert info.value.atom is doubled
        assert isinstance(info.value, TypeError)
        assert store.get(a) == 1

    def test_primitive_takes_one_update(self):
        store = Store()
        with pytest.raises(TypeError):
            store.set(primitive(0), 1, 2)

    def test_writable_derived(self):
        celsius = primitive(0.0)
        fahrenheit = writable(
            lambda get: get(celsius) * 9 / 5 + 32,
            lambda get, set, f: set(celsius, (f - 32) * 5 / 9),
        )
        store = Store()
        assert store.get(fahrenheit) == 32
        store.set(fahrenheit, 212)
        assert store.get(celsius) == 100

    def test_write_returns_result(self):
        a = primitive(1)
        bump = write_only(lambda get, set: get(a) + 41)
        store = Store()
        assert store.set(bump) == 42

    def test_write_only_reads_none(self):
        store = Store()
        assert store.get(write_only(lambda get, set: None)) is None

    def test_write_get_is_untracked(self):
        a = primitive(1)
        b = primitive(10)
        w = writable(lambda get: get(a), lambda get, set, v: set(a, get(b) + v))
        store = Store()
        store.get(w)
        store.set(w, 5)
        assert store.get(w) == 15
        assert store.dependencies_of(w) == {a}

    def test_cascaded_sets_notify_once(self):
        first = primitive("a")
        second = primitive("b")

        def set_both(get, set, value):
            set(first, value)
            set(second, value.upper())

        both = write_only(set_both)
        combined = read_only(lambda get: get(first) + get(second))
        store = Store()
        seen = []
        store.subscribe(combined, lambda: seen.append(store.get(combined)))
        store.set(both, "x")
        assert seen == ["xX"]

    def test_custom_write_sets_itself(self):
        def clamp(get, set, value):
            set(level, max(0, min(10, value)))

        level = write_only(clamp)
        store = Store()
        store.set(level, 99)
        assert store.get(level) == 10

    def test_derived_cannot_set_itself(self):
        base = primitive(0)
        w = writable(lambda get: get(base), lambda get, set, v: set(w, v))
        store = Store()
        with pytest.raises(NotWritableError):
            store.set(w, 1)

    def test_no_op_set_does_not_notify(self):
        a = primitive([1, 2])
        store = Store()
        calls = []
        store.subscribe(a, lambda: calls.append(1))
        store.set(a, [1, 2])
        assert calls == []

    def test_custom_equality(self):
        a = primitive([1, 2])
        store = Store(equals=lambda old, new: old is new)
        calls = []
        store.subscribe(a, lambda: calls.append(1))
        store.set(a, [1, 2])
        assert calls == [1]


class TestInitialValues:
    def test_primitives_seeded(self):
        a = primitive(1)
        b = primitive("x")
        store = create_store([(a, 10)])
        assert store.get(a) == 10
        assert store.get(b) == "x"

    def test_writable_goes_through_write(self):
        base = primitive(0)
        doubled = writable(lambda get: get(base) * 2, lambda get, set, v: set(base, v // 2))
        store = Store([(doubled, 8)])
        assert store.get(base) == 4
        assert store.get(doubled) == 8


class TestErrors:
    def test_direct_cycle(self):
        x = read_only(lambda get: get(x))
        other = primitive(1)
        store = Store()
        with pytest.raises(CycleError):
            store.get(x)
        assert store.get(other) == 1
        assert store.dependencies_of(x) == frozenset()

    def test_indirect_cycle(self):
        p = read_only(lambda get: get(q), label="p")
        q = read_only(lambda get: get(p), label="q")
        store = Store()
        with pytest.raises(CycleError) as info:
            store.get(p)
        assert info.value.path == (p, q, p)
        assert store.dependencies_of(p) == frozenset()
        assert store.dependents_of(q) == frozenset()

    def test_read_error_propagates_and_retries(self):
        calls = 0
        broken = primitive(True)

        def fn(get):
            nonlocal calls
            calls += 1
            if get(broken):
                raise ValueError("boom")
            return "ok"

        a = read_only(fn)
        store = Store()
        with pytest.raises(ValueError, match="boom"):
            store.get(a)
        with pytest.raises(ValueError, match="boom"):
            store.get(a)
        assert calls == 2  # nothing cached, retried
        store.set(broken, False)
        assert store.get(a) == "ok"

    def test_error_in_dependency_reaches_reader(self):
        def fail(get):
            raise KeyError("missing")

        bad = read_only(fail)
        reader = read_only(lambda get: get(bad))
        store = Store()
        with pytest.raises(KeyError):
            store.get(reader)

    def test_write_error_propagates(self):
        def fail(get, set, value):
            raise RuntimeError("nope")

        store = Store()
        with pytest.raises(RuntimeError):
            store.set(write_only(fail), 1)

    def test_repr(self):
        a = primitive(1)
        store = Store()
        store.get(a)
        assert repr(store) == "Store(1 atoms, 0 mounted)"


def _chain(store, length):
    """base -> +1 -> +1 ..., each link read once as it is added."""
    atoms = [primitive(0)]
    for _ in range(length):
        atoms.append(read_only(lambda get, prev=atoms[-1]: get(prev) + 1))
        store.get(atoms[-1])
    return atoms


class TestLongChains:
    def test_revalidates_without_recursion(self):
        store = Store()
        atoms = _chain(store, 3000)
        store.set(atoms[0], 10)
        assert store.get(atoms[-1]) == 3010

    def test_unchanged_chain_is_not_recomputed(self):
        calls = 0
        store = Store()
        atoms = _chain(store, 50)

        def top_fn(get):
            nonlocal calls
            calls += 1
            return get(atoms[-1])

        top = read_only(top_fn)
        store.get(top)
        store.get(top)
        assert calls == 1

    def test_mounted_chain(self):
        store = Store()
        atoms = _chain(store, 3000)
        calls = []
        unsubscribe = store.subscribe(atoms[-1], lambda: calls.append(1))
        store.set(atoms[0], 1)
        assert calls == [1]
        assert store.get(atoms[-1]) == 3001
        unsubscribe()
        assert not store.is_mounted(atoms[1])
        assert not store.is_mounted(atoms[0])
