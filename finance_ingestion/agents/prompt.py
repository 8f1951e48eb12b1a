"""
Extraction prompt sent with every document.

The prompt declares both response shapes. The model picks the statement
shape (isMultiTransaction: true) only for credit card statements.

The prompt is in Portuguese: the documents are Brazilian and the model
follows formatting rules more reliably in the document's language.
"""

from typing import Sequence


SINGLE_DOCUMENT_SHAPE = """{
  "merchant": "Nome do estabelecimento/comerciante",
  "date": "Data da transação no formato ISO 8601 (YYYY-MM-DDTHH:mm:ss.sssZ)",
  "amount": Valor total como número decimal (ex: 1200.50),
  "category": "Categoria da despesa",
  "items": [
    {
      "description": "Descrição do item",
      "quantity": Quantidade (opcional),
      "unitPrice": Preço unitário (opcional),
      "totalPrice": Preço total do item
    }
  ]
}"""

STATEMENT_SHAPE = """{
  "isMultiTransaction": true,
  "statementInfo": {
    "institution": "Banco ou emissor do cartão",
    "cardLastDigits": "Últimos 4 dígitos do cartão",
    "dueDate": "Vencimento da fatura em ISO 8601",
    "totalAmount": Valor total da fatura como número decimal,
    "creditLimit": Limite do cartão (opcional),
    "periodStart": "Início do período em ISO 8601 (opcional)",
    "periodEnd": "Fim do período em ISO 8601 (opcional)",
    "holderName": "Nome do titular (opcional)"
  },
  "transactions": [
    {
      "merchant": "Estabelecimento",
      "date": "Data da compra em ISO 8601",
      "amount": Valor como número decimal positivo,
      "category": "Categoria da despesa",
      "description": "Descrição como aparece na fatura",
      "installmentInfo": "Ex: Parcela 2 de 12 (opcional)",
      "cardLastDigits": "Últimos 4 dígitos do cartão usado (opcional)",
      "isRefund": false
    }
  ]
}"""

UNREADABLE_DOCUMENT_REPLY = (
    '{"merchant": null, "date": null, "amount": 0, "category": null, "items": null}'
)


def build_extraction_prompt(available_categories: Sequence[str] = ()) -> str:
    """
    Build the extraction prompt, listing the caller's categories if any.

    Categories are a hint, the model may still suggest a new one.
    """
    categories_line = ""
    if available_categories:
        categories_line = f"\nCategorias disponíveis: {', '.join(available_categories)}\n"

    return f"""Você é um especialista em extração de dados financeiros de documentos brasileiros.
{categories_line}
Analise a imagem ou PDF e identifique o tipo de documento.

Para cupons fiscais, notas fiscais, recibos e boletos (UMA transação), responda neste formato JSON:

{SINGLE_DOCUMENT_SHAPE}

Para faturas de cartão de crédito (VÁRIAS transações), responda neste formato JSON:

{STATEMENT_SHAPE}

REGRAS IMPORTANTES:
1. Converta valores em Real (R$) para números decimais: "R$ 1.200,50" → 1200.50
2. Converta datas brasileiras (DD/MM/YYYY) para ISO 8601
3. Se a data não tiver hora, use 00:00:00
4. Use apenas números para valores, sem símbolos de moeda
5. Se não encontrar algum campo, use null
6. Retorne APENAS o JSON, sem texto adicional
7. Se o documento estiver ilegível ou não for um documento financeiro, retorne: {UNREADABLE_DOCUMENT_REPLY}
8. Para a categoria: tente encaixar em uma das "Categorias disponíveis". Se não for possível, sugira uma categoria curta e descritiva (ex: "Alimentação", "Transporte", "Saúde")
9. Em faturas, estornos e créditos (marcados com "+" ou "estorno") têm "isRefund": true
10. Em faturas, inclua TODAS as transações de todas as páginas

Extraia os dados agora:"""
