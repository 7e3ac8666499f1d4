"""
ルーティン提供インターフェース（読み取り専用）
ルーティンの作成・編集は外部システムが担当し、本エンジンは参照のみ行う
"""

import yaml
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ...core.exceptions import NotFoundError, ValidationError
from ...core.models import Exercise, Routine, RoutineSettings, Workout

logger = logging.getLogger(__name__)


class RoutineProvider(ABC):
    """ルーティン提供者の抽象基底クラス"""

    @abstractmethod
    async def get_routine(self, user_id: str, routine_id: str) -> Optional[Routine]:
        """ルーティン取得（存在しなければ None）"""

    @abstractmethod
    async def list_routines(self, user_id: str, active_only: bool = False) -> List[Routine]:
        """ユーザーのルーティン一覧"""

    async def require_routine(self, user_id: str, routine_id: str) -> Routine:
        routine = await self.get_routine(user_id, routine_id)
        if routine is None:
            raise NotFoundError(f"Routine not found: {routine_id}")
        return routine


class InMemoryRoutineProvider(RoutineProvider):
    """メモリ上のルーティン提供者"""

    def __init__(self, routines: Optional[Iterable[Routine]] = None):
        self._routines: Dict[str, Routine] = {}
        for routine in routines or []:
            self.put(routine)

    def put(self, routine: Routine):
        self._routines[routine.id] = routine

    def remove(self, routine_id: str):
        self._routines.pop(routine_id, None)

    async def get_routine(self, user_id: str, routine_id: str) -> Optional[Routine]:
        routine = self._routines.get(routine_id)
        if routine is None or routine.user_id != user_id:
            return None
        return routine

    async def list_routines(self, user_id: str, active_only: bool = False) -> List[Routine]:
        return [
            routine for routine in self._routines.values()
            if routine.user_id == user_id and (routine.is_active or not active_only)
        ]


class YamlRoutineProvider(InMemoryRoutineProvider):
    """YAMLファイルからルーティンを読み込む提供者

    ファイル形式::

        routines:
          - id: r1
            user_id: u1
            name: Push Pull
            is_active: true
            settings: {duration_weeks: 4, workouts_per_week: 3, split_type: ppl}
            workouts:
              - id: w1
                day_number: 1
                name: Push
                exercises:
                  - {id: e1, name: Bench Press, sets: 4, reps: "8-10", muscle_group: chest}
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        super().__init__(self._load())

    def _load(self) -> List[Routine]:
        with open(self.file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        routines = [parse_routine(item) for item in data.get('routines', [])]
        logger.info(f"Loaded {len(routines)} routines from {self.file_path}")
        return routines

    def reload(self):
        self._routines = {}
        for routine in self._load():
            self.put(routine)


def parse_routine(data: Dict[str, Any]) -> Routine:
    """辞書からルーティンを構築"""
    try:
        settings = data.get('settings') or {}
        return Routine(
            id=str(data['id']),
            user_id=str(data['user_id']),
            name=data['name'],
            is_active=bool(data.get('is_active', True)),
            settings=RoutineSettings(
                duration_weeks=int(settings.get('duration_weeks', 4)),
                workouts_per_week=int(settings.get('workouts_per_week', 3)),
                split_type=settings.get('split_type', 'full_body')
            ),
            workouts=[
                Workout(
                    id=str(w['id']),
                    day_number=int(w.get('day_number', index + 1)),
                    name=w['name'],
                    exercises=[
                        Exercise(
                            id=str(e['id']),
                            name=e['name'],
                            sets=int(e['sets']),
                            reps=str(e['reps']),
                            muscle_group=e.get('muscle_group', ''),
                            description=e.get('description')
                        )
                        for e in w.get('exercises', [])
                    ]
                )
                for index, w in enumerate(data.get('workouts', []))
            ]
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid routine data: {e}")
