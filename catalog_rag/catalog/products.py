"""
Product catalog data model and the default catalog.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class Product:
    """A catalog entry. Immutable once loaded."""
    id: str
    name: str
    aliases: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        name = data.get("name") or data.get("id")
        if not name:
            raise ValueError(f"Product entry has no name: {data!r}")
        return cls(
            id=str(data.get("id") or product_id(name)),
            name=name,
            aliases=tuple(data.get("aliases") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "aliases": list(self.aliases)}


def product_id(name: str) -> str:
    """Slug used as the id of products that come without one"""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


_DEFAULT_CATALOG: List[Tuple[str, List[str]]] = [
    ("Frido 3D Posture Plus Ergonomic Chair", ["3D Posture Chair", "Posture Plus Chair"]),
    ("Frido Active Socks Product Description", ["Active Socks", "Frido Socks"]),
    ("Frido AeroMesh Ergo Chair", ["AeroMesh Chair", "Aero Mesh Chair"]),
    ("Frido Aeroluxe Massage Chair", ["Aeroluxe Chair", "Massage Chair"]),
    ("Frido Arch Sports Insole", ["Arch Insole", "Sports Insole"]),
    ("Frido Arch Support Insole - Rigid", ["Rigid Arch Support", "Rigid Insole"]),
    ("Frido Arch Support Insoles - Semi Rigid", ["Semi Rigid Arch Support", "Semi Rigid Insole"]),
    ("Frido Ball of Foot Cushion Pro", ["Ball Cushion Pro", "Foot Cushion Pro"]),
    ("Frido Barefoot Sock Shoe Classic", ["Barefoot Shoe", "Sock Shoe"]),
    ("Frido Cervical Butterfly pillow", ["Cervical Pillow", "Butterfly Pillow"]),
    ("Frido Cloud Back Rest Cushion", ["Cloud Backrest", "Back Rest Cushion"]),
    ("Frido Cloud Seat Cushion", ["Cloud Cushion", "Cloud Seat"]),
    ("Frido Cuddle Sleep Pillow", ["Cuddle Pillow", "Sleep Pillow"]),
    ("Frido Dual Gel Insoles", ["Gel Insoles", "Dual Gel"]),
    ("Frido Dual Gel Insoles Pro", ["Gel Insoles Pro", "Dual Gel Pro"]),
    ("Frido Glide Ergo Chair", ["Glide Chair", "Ergo Chair"]),
    ("Frido Knee Pillow", ["Knee Support Pillow"]),
    ("Frido Leg Elevation Pillow", ["Leg Pillow", "Elevation Pillow"]),
    ("Frido Lumbo Sacral Belt", ["Lumbar Belt", "Back Support Belt"]),
    ("Frido Maternity Pillow", ["Pregnancy Pillow"]),
    ("Frido Max Comfort Hi-Per Foam Insoles", ["Max Comfort Insoles", "Foam Insoles"]),
    ("Frido Mini Car Neck Pillow", ["Car Neck Pillow Mini", "Mini Neck Pillow"]),
    ("Frido Mouse Wrist Support", ["Wrist Support", "Mouse Pad Wrist"]),
    ("Frido Ortho Memory Foam Pillow", ["Memory Foam Pillow", "Ortho Pillow"]),
    ("Frido Orthopedic Heel Pad", ["Heel Pad", "Ortho Heel Pad", "Heel Pad Pro"]),
    ("Frido Orthotics Bunion Corrector", ["Bunion Corrector", "Toe Corrector"]),
    ("Frido Orthotics Compression Gloves", ["Compression Gloves", "Hand Gloves"]),
    ("Frido Orthotics Posture Corrector", ["Posture Corrector", "Back Brace"]),
    ("Frido Orthotics Wrist Support Brace", ["Wrist Brace", "Wrist Support"]),
    ("Frido Ouch Free High Heels Ball of Foot Cushions", ["High Heel Cushion", "Ball Foot Cushion"]),
    ("Frido Plantar Fasciitis Pain Relief Ortho Insole", ["Plantar Fasciitis Insole", "Pain Relief Insole"]),
    ("Frido School Shoes", ["Kids Shoes", "School Footwear"]),
    ("Frido Silicone Gel Insole", ["Silicone Insole", "Gel Insole"]),
    ("Frido Slim Seat Cushion", ["Slim Cushion", "Thin Seat Cushion"]),
    ("Frido Travel Neck Pillow", ["Travel Pillow", "Neck Support Travel"]),
    ("Frido Ultimate Back Lumbar Cushion", ["Lumbar Cushion", "Back Support Cushion"]),
    ("Frido Ultimate Car Backrest Cushion", ["Car Backrest", "Car Back Support"]),
    ("Frido Ultimate Car Neck Rest Pillow", ["Car Neck Pillow", "Neck Rest Car"]),
    ("Frido Ultimate Car Wedge Seat Cushion", ["Car Wedge Cushion", "Wedge Seat Car"]),
    ("Frido Ultimate Coccyx Seat Cushion", ["Coccyx Cushion", "Tailbone Cushion"]),
    ("Frido Ultimate Cozy Pillow", ["Cozy Pillow", "Comfort Pillow"]),
    ("Frido Ultimate Deep Sleep Pillow", ["Deep Sleep Pillow", "Sleep Pillow"]),
    ("Frido Ultimate Lap Desk Pillow", ["Lap Desk", "Desk Pillow"]),
    ("Frido Ultimate Mattress Topper", ["Mattress Topper", "Bed Topper"]),
    ("Frido Ultimate Neck Contour Cervical Pillow", ["Neck Contour Pillow", "Cervical Pillow"]),
    ("Frido Ultimate Neck Contour Cervical Plus Pillow", ["Cervical Plus Pillow", "Neck Contour Plus"]),
    ("Frido Ultimate Office Neck Rest Pillow", ["Office Neck Pillow", "Work Neck Rest"]),
    ("Frido Ultimate Piles Pain Relief Seat Cushion", ["Piles Cushion", "Hemorrhoid Cushion"]),
    ("Frido Ultimate Pro Posture Corrector", ["Pro Posture Corrector", "Posture Corrector Pro"]),
    ("Frido Ultimate Pro Seat Cushion", ["Pro Seat Cushion", "Seat Cushion Pro"]),
    ("Frido Ultimate Socket Seat Cushion", ["Socket Cushion", "Socket Seat"]),
    ("Frido Ultimate Sofa Backrest Cushion", ["Sofa Backrest", "Couch Back Support"]),
    ("Frido Ultimate Tailbone Pain Relief Seat Cushion", ["Tailbone Cushion", "Coccyx Pain Relief"]),
    ("Frido Ultimate Wedge Cushion", ["Wedge Cushion", "Incline Cushion"]),
    ("Frido Ultimate Wedge Plus Cushion", ["Wedge Plus", "Wedge Cushion Plus"]),
    ("Frido Ultimate Wedge Plus Max Cushion", ["Wedge Plus Max", "Max Wedge Cushion"]),
    ("Frido Ultra Slim Deep Sleep Pillow", ["Ultra Slim Pillow", "Slim Sleep Pillow"]),
    ("Frido Wedge Neck Rest Pillow", ["Wedge Neck Pillow", "Neck Rest Wedge"]),
    ("Frido Wedge Plus Cushion Cover", ["Wedge Cover", "Cushion Cover"]),
    ("Frido Women Comfort Sandal", ["Women Sandal", "Comfort Sandal"]),
    ("Max Comfort Arch Sports Insoles (Non RCB)", ["Max Comfort Insoles", "Arch Sports Insole"]),
    ("Portable Standing Desk", ["Standing Desk", "Portable Desk"]),
    ("Prime Electric Wheelchair", ["Electric Wheelchair", "Wheelchair"]),
]

DEFAULT_PRODUCTS: List[Product] = [
    Product(id=product_id(name), name=name, aliases=tuple(aliases))
    for name, aliases in _DEFAULT_CATALOG
]
