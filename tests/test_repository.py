from unittest.mock import AsyncMock, MagicMock

import pytest

from toolhub.repository.repository import Repository


def agent(agent_id, chain_ids=None, tools=(), image=None, verified=True):
    return {
        "_id": f"oid-{agent_id}",
        "id": agent_id,
        "name": agent_id,
        "verified": verified,
        "chainIds": chain_ids or [],
        "image": image,
        "tools": list(tools),
    }


def tool(tool_id, name):
    return {"id": tool_id, "agentId": "a", "type": "function", "function": {"name": name, "description": ""}}


@pytest.fixture
def collections():
    return {"ai-assistants": MagicMock()}


@pytest.fixture
def repo(collections, logger):
    db = MagicMock()
    db.__getitem__.side_effect = collections.__getitem__
    return Repository(db, logger)


def serve(collection, documents):
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=documents)
    collection.find.return_value = cursor


async def test_query_agents_filters_verified_and_chains(repo, collections):
    serve(collections["ai-assistants"], [agent("a1", [1, 10]), agent("a2", [56]), agent("a3")])

    agents = await repo.query_agents(verified_only=True, chain_ids=["10"])

    collections["ai-assistants"].find.assert_called_once_with({"verified": True})
    assert [a["id"] for a in agents] == ["a1"]
    assert "_id" not in agents[0]


async def test_query_agents_paginates(repo, collections):
    serve(collections["ai-assistants"], [agent(f"a{i}") for i in range(5)])

    agents = await repo.query_agents(verified_only=False, offset=1, limit=2)

    collections["ai-assistants"].find.assert_called_once_with({})
    assert [a["id"] for a in agents] == ["a1", "a2"]


async def test_query_tools_flattens_and_deduplicates(repo, collections):
    serve(collections["ai-assistants"], [
        agent("a1", [1], [tool("t1", "get-price"), tool("t2", "swap")], image="a1.png"),
        agent("a2", [56], [tool("t3", "Get-Price-History"), tool("t4", "swap")], image="a2.png"),
    ])

    tools = await repo.query_tools(verified_only=True, function_name="price")

    assert [t["id"] for t in tools] == ["t1", "t3"]
    assert tools[0]["image"] == "a1.png"
    assert tools[1]["chainIds"] == [56]

    everything = await repo.query_tools(verified_only=False)
    assert [t["function"]["name"] for t in everything] == ["get-price", "swap", "Get-Price-History"]


async def test_query_tools_offset(repo, collections):
    serve(collections["ai-assistants"], [agent("a1", tools=[tool("t1", "a"), tool("t2", "b"), tool("t3", "c")])])

    tools = await repo.query_tools(offset=2)

    assert [t["id"] for t in tools] == ["t3"]


async def test_create_agent_stamps_timestamps(repo, collections):
    agents = collections["ai-assistants"]
    agents.insert_one = AsyncMock()
    agents.find_one = AsyncMock(return_value={"_id": "oid", "id": "a1", "name": "x"})

    stored = await repo.create_agent({"id": "a1", "name": "x"})

    inserted = agents.insert_one.await_args.args[0]
    assert "created_at" in inserted and "updated_at" in inserted
    assert stored == {"id": "a1", "name": "x"}


async def test_ensure_collections_never_raises(repo, collections):
    collections["ai-assistants"].create_index = AsyncMock(side_effect=RuntimeError("no mongo"))

    await repo.ensure_collections()


async def test_query_tools_by_chain(repo, collections):
    serve(collections["ai-assistants"], [
        agent("a1", [1], [tool("t1", "get-price")]),
        agent("a2", [56], [tool("t2", "swap")]),
    ])

    tools = await repo.query_tools(chain_id="56")

    assert [t["id"] for t in tools] == ["t2"]
