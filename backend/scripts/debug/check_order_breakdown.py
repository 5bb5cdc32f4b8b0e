#!/usr/bin/env python3
"""
Script de diagnóstico: Verificar el desglose de precios de pedidos
Recalcula el pedido desde sus items y muestra cada campo que no coincide.
Con --compare-with compara dos pedidos (ej. mismo carrito por Datafast y DeUna).
"""
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment
backend_dir = Path(__file__).resolve().parents[2]
load_dotenv(backend_dir / '.env')
sys.path.insert(0, str(backend_dir))

from app.repositories.order_repository import OrderRepository
from app.services.reconciliation_service import ReconciliationService, compare_records


def print_discrepancies(discrepancies, title: str) -> None:
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)

    if not discrepancies:
        print("✅ Desglose consistente")
        return

    print(f"❌ {len(discrepancies)} diferencias\n")
    print(f"{'Campo':<45} {'Guardado':>10} {'Esperado':>10}")
    print("-" * 70)
    for d in discrepancies:
        row = d.to_dict()
        print(f"{row['field']:<45} {str(row['stored']):>10} {str(row['expected']):>10}")


def check_order(order_id: int) -> int:
    discrepancies = ReconciliationService().compare(order_id)
    print_discrepancies(discrepancies, f"🔍 PEDIDO {order_id}: guardado vs recalculado")
    return len(discrepancies)


def compare_orders(order_id: int, other_id: int) -> int:
    repo = OrderRepository()
    first = repo.find_by_id(order_id)
    second = repo.find_by_id(other_id)
    if first is None or second is None:
        missing = order_id if first is None else other_id
        print(f"❌ Pedido {missing} no encontrado")
        return 1

    discrepancies = compare_records(first, second)
    print_discrepancies(
        discrepancies,
        f"🔍 PEDIDO {order_id} ({first.payment_method}) vs {other_id} ({second.payment_method})",
    )
    return len(discrepancies)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='Check the pricing breakdown of stored orders')
    parser.add_argument('order_ids', type=int, nargs='+', help='Order IDs to check')
    parser.add_argument('--compare-with', type=int, help='Compare the first order against this order')
    args = parser.parse_args()

    if args.compare_with:
        problems = compare_orders(args.order_ids[0], args.compare_with)
    else:
        problems = sum(check_order(order_id) for order_id in args.order_ids)

    sys.exit(1 if problems else 0)
