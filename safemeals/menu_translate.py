# safemeals/menu_translate.py
"""
Korean -> English menu name translation.

Lookup order: in-process cache, then the local dish table, then the
normalized name itself (unknown dishes are shown untranslated rather than
guessed).
"""

from __future__ import annotations

import threading
import uuid
from typing import Dict, List, Optional, Sequence

from .ocr_types import NormalizedItem, TranslatedItem

MENU_TRANSLATION_MAP: Dict[str, str] = {
    # Stews
    "김치찌개": "Kimchi Stew",
    "된장찌개": "Soybean Paste Stew",
    "순두부찌개": "Soft Tofu Stew",
    "부대찌개": "Budae Stew",
    "청국장찌개": "Fermented Soybean Stew",
    "동태찌개": "Pollack Stew",
    "고등어찌개": "Mackerel Stew",
    "두부찌개": "Tofu Stew",
    "김치두부찌개": "Kimchi Tofu Stew",
    "해물순두부찌개": "Seafood Soft Tofu Stew",
    # Soups
    "된장국": "Soybean Paste Soup",
    "미역국": "Seaweed Soup",
    "떡국": "Rice Cake Soup",
    "만둣국": "Dumpling Soup",
    "삼계탕": "Samgyetang (Ginseng Chicken Soup)",
    "갈비탕": "Short Rib Soup",
    "설렁탕": "Seolleongtang (Ox Bone Soup)",
    "곰탕": "Gomtang (Beef Bone Soup)",
    "육개장": "Yukgaejang (Spicy Beef Soup)",
    "추어탕": "Chueo-tang (Loach Soup)",
    "해장국": "Hangover Soup",
    "콩나물국": "Bean Sprout Soup",
    "북어국": "Dried Pollack Soup",
    "시래기국": "Radish Greens Soup",
    # Grilled
    "불고기": "Bulgogi",
    "삼겹살": "Samgyeopsal (Pork Belly)",
    "갈비": "Galbi (Grilled Ribs)",
    "돼지갈비": "Pork Ribs",
    "소갈비": "Beef Ribs",
    "LA갈비": "LA Galbi",
    "목살": "Pork Neck",
    "항정살": "Pork Jowl",
    "생선구이": "Grilled Fish",
    "고등어구이": "Grilled Mackerel",
    "삼치구이": "Grilled Spanish Mackerel",
    "갈치구이": "Grilled Hairtail",
    "조기구이": "Grilled Croaker",
    # Rice
    "비빔밥": "Bibimbap",
    "돌솥비빔밥": "Stone Pot Bibimbap",
    "김치볶음밥": "Kimchi Fried Rice",
    "볶음밥": "Fried Rice",
    "새우볶음밥": "Shrimp Fried Rice",
    "오므라이스": "Omurice",
    "덮밥": "Rice Bowl",
    "제육덮밥": "Spicy Pork Rice Bowl",
    "불고기덮밥": "Bulgogi Rice Bowl",
    "김밥": "Gimbap (Seaweed Rice Roll)",
    "참치김밥": "Tuna Gimbap",
    "치즈김밥": "Cheese Gimbap",
    "누룽지": "Scorched Rice",
    # Noodles
    "냉면": "Naengmyeon (Cold Noodles)",
    "물냉면": "Mul Naengmyeon (Cold Noodle Soup)",
    "비빔냉면": "Bibim Naengmyeon (Spicy Cold Noodles)",
    "칼국수": "Kalguksu (Knife-Cut Noodles)",
    "잔치국수": "Janchi Guksu (Noodle Soup)",
    "막국수": "Makguksu (Buckwheat Noodles)",
    "짜장면": "Jajangmyeon (Black Bean Noodles)",
    "짬뽕": "Jjamppong (Spicy Seafood Noodles)",
    "우동": "Udon",
    "라면": "Ramyeon",
    # Side dishes
    "김치": "Kimchi",
    "깍두기": "Kkakdugi (Radish Kimchi)",
    "총각김치": "Ponytail Radish Kimchi",
    "백김치": "White Kimchi",
    "나물": "Namul (Seasoned Vegetables)",
    "시금치나물": "Seasoned Spinach",
    "콩나물": "Bean Sprouts",
    "멸치볶음": "Stir-Fried Anchovies",
    "계란말이": "Rolled Omelette",
    "두부조림": "Braised Tofu",
    # Pancakes
    "김치전": "Kimchi Pancake",
    "파전": "Pajeon (Green Onion Pancake)",
    "해물파전": "Seafood Pancake",
    "부추전": "Garlic Chive Pancake",
    "빈대떡": "Bindae-tteok (Mung Bean Pancake)",
    "감자전": "Potato Pancake",
    "호박전": "Zucchini Pancake",
    "동그랑땡": "Dong Geu Rang Ttaeng (Pan-Fried Meat Patties)",
    # Street food
    "떡볶이": "Tteokbokki",
    "순대": "Sundae (Blood Sausage)",
    "튀김": "Twigim (Korean Fried Food)",
    "오뎅": "Odeng (Fish Cake)",
    "붕어빵": "Bungeoppang (Fish-Shaped Pastry)",
    "호떡": "Hotteok (Sweet Pancake)",
    "군고구마": "Roasted Sweet Potato",
    # Stir-fried
    "제육볶음": "Jeyuk Bokkeum (Spicy Pork Stir-Fry)",
    "오징어볶음": "Ojingeo Bokkeum (Spicy Squid Stir-Fry)",
    "낙지볶음": "Nakji Bokkeum (Spicy Octopus Stir-Fry)",
    "고추장불고기": "Gochujang Bulgogi",
    # Chicken
    "치킨": "Fried Chicken",
    "양념치킨": "Yang Nyeom Chicken (Sweet & Spicy)",
    "후라이드치킨": "Fried Chicken",
    "간장치킨": "Soy Sauce Chicken",
    "닭갈비": "Dak Galbi (Spicy Chicken)",
    "찜닭": "Jjimdak (Braised Chicken)",
    # Seafood
    "회": "Hoe (Raw Fish)",
    "초밥": "Sushi",
    "회덮밥": "Hoe Dupbap (Raw Fish Rice Bowl)",
    "광어회": "Flounder Sashimi",
    "연어회": "Salmon Sashimi",
    "참치회": "Tuna Sashimi",
    # Desserts & drinks
    "빙수": "Bingsu (Shaved Ice Dessert)",
    "팥빙수": "Patbingsu (Red Bean Shaved Ice)",
    "커피": "Coffee",
    "녹차": "Green Tea",
    "식혜": "Sikhye (Sweet Rice Drink)",
    "수정과": "Sujeonggwa (Cinnamon Punch)",
}

_cache: Dict[str, str] = {}
_cache_lock = threading.Lock()


def generate_menu_id() -> str:
    return f"menu-{uuid.uuid4().hex[:10]}"


def get_local_translation(menu_name: str) -> Optional[str]:
    return MENU_TRANSLATION_MAP.get(menu_name)


def clear_translation_cache() -> None:
    with _cache_lock:
        _cache.clear()


def translate_name(menu_name: str) -> str:
    with _cache_lock:
        cached = _cache.get(menu_name)
    if cached:
        return cached
    mapped = get_local_translation(menu_name)
    if mapped:
        with _cache_lock:
            _cache[menu_name] = mapped
        return mapped
    return menu_name


def translate_menu_names(items: Optional[Sequence[NormalizedItem]]) -> List[TranslatedItem]:
    if not items:
        return []
    return [
        TranslatedItem(
            id=generate_menu_id(),
            original=item.original,
            normalized=item.normalized,
            translated=translate_name(item.normalized),
            bbox=item.bbox,
        )
        for item in items
    ]
