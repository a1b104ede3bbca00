from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from taskboard.dependencies.mongodb import get_database
from taskboard.models.board import BoardStore


def get_board_store(db: AsyncIOMotorDatabase = Depends(get_database)) -> BoardStore:
    """
    `store: BoardStore = Depends(get_board_store)`로 사용
    """
    return BoardStore(db)
