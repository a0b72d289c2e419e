# src/carebook/charts.py
from decimal import Decimal
from typing import Dict

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

MONTH_LABELS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def create_income_chart(monthly: Dict[int, Decimal], filename: str, subtitle: str = None,
                        color: str = "#4c9f70", currency_symbol: str = "$"):
    """
    Erstellt ein Balkendiagramm der Einnahmen je Monat und speichert es als PNG.
    :param monthly: Mapping Monat (1..12) -> Betrag, z.B. aus reports.income_by_month.
    :param filename: Pfad zur Ausgabedatei, z.B. "income_2024.png".
    :param subtitle: (Optional) Text, der unter das Diagramm geschrieben wird.
    """
    values = [float(monthly.get(m, 0)) for m in range(1, 13)]
    # Wenn keine Daten da sind, lege ein kleines Platzhalter-Bild an
    if sum(values) == 0:
        fig, ax = plt.subplots()
        ax.text(0.5, 0.5, "No income", ha="center", va="center", fontsize=14)
        ax.axis("off")
        if subtitle:
            fig.text(0.5, 0.02, subtitle, ha="center", va="bottom", fontsize=16, fontweight='bold')
        fig.savefig(filename, bbox_inches="tight")
        plt.close(fig)
        return

    fig, ax = plt.subplots(figsize=(8, 4))
    bars = ax.bar(MONTH_LABELS, values, color=color)
    ax.set_ylabel(f"Income ({currency_symbol})")
    for bar, value in zip(bars, values):
        if value:
            ax.annotate(f"{value:,.0f}", (bar.get_x() + bar.get_width() / 2, value),
                        ha="center", va="bottom", fontsize=8)
    if subtitle:
        fig.text(0.5, 0.01, subtitle, ha="center", va="bottom", fontsize=16, fontweight='bold')
    fig.savefig(filename, bbox_inches="tight")
    plt.close(fig)
