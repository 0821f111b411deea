import pytest

from walletwatch.db.graph_store import GraphStore
from walletwatch.errors import DuplicateEnrollmentError
from walletwatch.models import TrackedNode

from tests.conftest import A, B, C, D


@pytest.mark.asyncio
async def test_levels_follow_referral_chain(store):
    wallets = [A, B, C, D]
    parent = None
    nodes = []
    for wallet in wallets:
        node = TrackedNode.create(wallet, "chain", parent)
        await store.insert(node)
        nodes.append(node)
        parent = node

    for depth, wallet in enumerate(wallets, start=1):
        stored = await store.get(wallet)
        assert stored.level == depth
        assert stored.ancestor_chain == tuple(n.id for n in nodes[:depth - 1])

    root = await store.get(A)
    assert root.referrer == ""
    assert root.level == 1


@pytest.mark.asyncio
async def test_duplicate_insert_fails(store):
    await store.insert(TrackedNode.create(A, "first"))

    with pytest.raises(DuplicateEnrollmentError):
        await store.insert(TrackedNode.create(A.upper().replace("0X", "0x"), "second"))

    assert await store.count() == 1
    assert (await store.get(A)).name == "first"


@pytest.mark.asyncio
async def test_add_node_derives_from_referrer(store):
    root = await store.add_node(A, "root")
    child = await store.add_node(B, "child", referrer=A)

    assert root.level == 1
    assert child.level == 2
    assert child.referrer == A
    assert child.ancestor_chain == (root.id,)


@pytest.mark.asyncio
async def test_add_node_with_unknown_referrer_is_root(store):
    node = await store.add_node(B, "orphan", referrer=C)
    assert node.level == 1
    assert node.referrer == ""
    assert node.ancestor_chain == ()


@pytest.mark.asyncio
async def test_remove_does_not_cascade(store):
    await store.add_node(A, "root")
    await store.add_node(B, "child", referrer=A)

    assert await store.remove(A) is True
    assert await store.remove(A) is False

    child = await store.get(B)
    assert child is not None
    assert child.referrer == A
    assert child.level == 2


@pytest.mark.asyncio
async def test_rename_is_the_only_mutation(store):
    node = await store.add_node(A, "old")
    assert await store.rename(A, "new") is True
    renamed = await store.get(A)
    assert renamed.name == "new"
    assert renamed.id == node.id
    assert await store.rename(B, "nobody") is False


@pytest.mark.asyncio
async def test_namespaces_are_isolated(tmp_path):
    first = GraphStore(tmp_path / "shared.db", prefix="one:")
    second = GraphStore(tmp_path / "shared.db", prefix="two:")

    await first.add_node(A, "in one")
    await second.add_node(A, "in two")

    assert await first.list_all() == [A]
    assert (await second.get(A)).name == "in two"
    assert await first.clear_all() == 1
    assert await second.exists(A)


@pytest.mark.asyncio
async def test_snapshot_and_clear(store):
    await store.add_node(A, "Fund A")
    await store.add_node(B, "Fund B", referrer=A)

    snapshot = await store.load_snapshot()
    assert snapshot.wallets == frozenset({A, B})
    assert snapshot.name_of(B) == "Fund B"
    assert A in snapshot

    assert await store.clear_all() == 2
    assert await store.list_all() == []


@pytest.mark.asyncio
async def test_stored_nodes_are_immutable_and_hashable(store):
    root = await store.add_node(A, "root")
    child = await store.add_node(B, "child", referrer=A)
    loaded = await store.get(B)

    assert isinstance(loaded.ancestor_chain, tuple)
    assert loaded == child
    assert {root, child, loaded} == {root, child}
