"""Tests for arrival-ordered per-user serialization."""
import asyncio

from mindguard.shared.utils import UserSerializer


class TestUserSerializer:

    def test_mutations_apply_in_arrival_order(self):
        async def scenario():
            serializer = UserSerializer()
            applied = []

            async def message(label, delay):
                reservation = serializer.reserve("user")
                try:
                    await asyncio.sleep(delay)
                    async with reservation:
                        applied.append(label)
                finally:
                    reservation.release()

            # Later arrivals finish their signal work first
            await asyncio.gather(
                message("first", 0.05),
                message("second", 0.02),
                message("third", 0.0),
            )
            return applied, serializer

        applied, serializer = asyncio.run(scenario())

        assert applied == ["first", "second", "third"]
        assert serializer.pending("user") == 0

    def test_users_do_not_block_each_other(self):
        async def scenario():
            serializer = UserSerializer()
            held = serializer.reserve("alice")
            applied = []

            async with serializer.reserve("bob"):
                applied.append("bob")
            held.release()
            return applied

        assert asyncio.run(scenario()) == ["bob"]

    def test_release_without_entering_unblocks_successor(self):
        async def scenario():
            serializer = UserSerializer()
            abandoned = serializer.reserve("user")
            successor = serializer.reserve("user")

            async def apply():
                async with successor:
                    return "applied"

            task = asyncio.ensure_future(apply())
            await asyncio.sleep(0)
            assert not task.done()
            abandoned.release()
            return await asyncio.wait_for(task, timeout=1.0)

        assert asyncio.run(scenario()) == "applied"

    def test_release_is_idempotent(self):
        async def scenario():
            serializer = UserSerializer()
            reservation = serializer.reserve("user")
            async with reservation:
                pass
            reservation.release()
            reservation.release()
            return serializer.pending("user")

        assert asyncio.run(scenario()) == 0
