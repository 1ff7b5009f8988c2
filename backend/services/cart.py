import logging
from typing import List
from core.exceptions import OrderError
from models.schemas import CartLine, CartMergeResult

logger = logging.getLogger(__name__)

def merge(remote: List[CartLine], local: List[CartLine]) -> CartMergeResult:
    """Merge a guest's local cart into the server cart at login.

    The remote cart is the base whenever it has lines: local lines whose
    item_id is missing remotely are appended and returned in ``to_push``.
    Overlapping items keep the remote quantity; quantities are never summed.
    An empty remote cart takes the whole local cart. Either way a local item
    listed twice is kept and pushed once (first line wins).
    """
    remote_ids = {line.item_id for line in remote}
    to_push = []
    for line in local:
        if line.item_id not in remote_ids:
            to_push.append(line)
            remote_ids.add(line.item_id)

    return CartMergeResult(merged=list(remote) + to_push, to_push=to_push)

async def sync_cart_on_login(client, user_id: str, local: List[CartLine]) -> CartMergeResult:
    """Run the merge against the server cart and push the local-only lines.

    ``client`` is an OrdersClient. If the server cannot be reached the local
    cart is kept as-is and nothing is pushed.
    """
    try:
        remote = await client.fetch_cart(user_id)
    except OrderError as e:
        logger.warning(f"Cart sync for {user_id} skipped, keeping local cart: {e}")
        return CartMergeResult(merged=list(local), to_push=[])

    result = merge(remote, local)
    if result.to_push:
        try:
            await client.push_cart_items(user_id, result.to_push)
        except OrderError as e:
            # Merged view still stands; the next full cart sync retries the push
            logger.warning(f"Cart push for {user_id} failed: {e}")
    logger.info(f"Cart sync for {user_id}: {len(result.merged)} lines, {len(result.to_push)} pushed")
    return result
